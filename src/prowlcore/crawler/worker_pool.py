"""
Bounded asyncio worker pool.

Workers are started lazily, one per submission, until the capacity is
reached. Tasks wait in a queue whose size equals the capacity, so ``submit``
suspends while the queue is full.
"""

from __future__ import annotations

import asyncio
import contextvars
import enum
from typing import Awaitable, Callable, List, Optional, Set

import structlog

from prowlcore.errors import InvalidPoolCap, PoolAlreadyClosed

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[None]]

_STOP = object()

# The pool whose worker is executing the current task, if any.
_current_pool: contextvars.ContextVar[Optional["WorkerPool"]] = contextvars.ContextVar(
    "prowlcore_current_pool", default=None
)


class PoolState(enum.IntEnum):
    STOPPED = 0
    RUNNING = 1


class WorkerPool:
    def __init__(
        self,
        capacity: int,
        block_panic: bool = False,
        on_drop: Optional[Callable[[Job], None]] = None,
    ):
        """
        Args:
            capacity: Maximum number of concurrent workers, also the queue size
            block_panic: Log task errors and keep the worker alive instead of
                letting the error kill the worker and surface from ``wait()``
            on_drop: Called with every queued task that ``close(cancel=True)``
                discards without running it
        """
        if not isinstance(capacity, int) or capacity <= 0:
            raise InvalidPoolCap(f"invalid pool cap: {capacity!r}")
        self.capacity = capacity
        self.block_panic = block_panic
        self.state = PoolState.RUNNING
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._workers: Set[asyncio.Task] = set()
        self._errors: List[BaseException] = []
        self._retiring = False
        self._on_drop = on_drop

    @property
    def running_workers(self) -> int:
        return len(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def in_worker(self) -> bool:
        """True when called from a task running on one of this pool's workers."""
        return _current_pool.get() is self

    async def submit(self, job: Job) -> None:
        if self.state is PoolState.STOPPED:
            raise PoolAlreadyClosed("pool already closed")
        if len(self._workers) < self.capacity:
            self._spawn()
        await self._queue.put(job)
        # A worker may have retired while this put was suspended.
        self.check_worker()

    def _spawn(self) -> None:
        task = asyncio.create_task(self._run(), name=f"prowlcore-worker-{len(self._workers)}")
        self._workers.add(task)
        task.add_done_callback(self._on_worker_done)

    async def _run(self) -> None:
        _current_pool.set(self)
        while True:
            job = await self._queue.get()
            try:
                if job is _STOP:
                    return
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if not self.block_panic:
                        self._errors.append(e)
                        raise
                    logger.exception("Worker task failed", error=str(e))
            finally:
                self._queue.task_done()

    def _on_worker_done(self, task: asyncio.Task) -> None:
        self._workers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Worker stopped by task error", error=str(task.exception()))
        self.check_worker()

    def check_worker(self) -> None:
        """Start a replacement worker if tasks are queued but nobody will run them."""
        if self._retiring:
            return
        if not self._queue.empty() and len(self._workers) < self.capacity:
            self._spawn()

    def _raise_errors(self) -> None:
        if self._errors:
            errors, self._errors = self._errors, []
            if len(errors) > 1:
                logger.error("Multiple worker tasks failed", count=len(errors))
            raise errors[0]

    async def _retire_workers(self) -> None:
        workers = list(self._workers)
        self._retiring = True
        try:
            for _ in workers:
                await self._queue.put(_STOP)
            if workers:
                await asyncio.gather(*workers, return_exceptions=True)
        finally:
            self._retiring = False
            self.check_worker()

    async def wait(self) -> None:
        """
        Block until every queued task has run, then retire the idle workers.

        Re-raises the first task error when ``block_panic`` is off. Must not be
        awaited from inside a task running on this pool.
        """
        await self._queue.join()
        await self._retire_workers()
        self._raise_errors()

    async def close(self, cancel: bool = False) -> None:
        """
        Refuse new tasks, drain the queue and stop the workers.

        With ``cancel=True`` queued tasks are handed to ``on_drop`` instead of
        run, and running ones are cancelled.
        """
        if self.state is PoolState.STOPPED and not self._workers and self._queue.empty():
            return
        self.state = PoolState.STOPPED
        if cancel:
            dropped = 0
            while not self._queue.empty():
                job = self._queue.get_nowait()
                self._queue.task_done()
                if job is not _STOP and self._on_drop is not None:
                    self._on_drop(job)
                dropped += 1
            workers = list(self._workers)
            for worker in workers:
                worker.cancel()
            if workers:
                await asyncio.gather(*workers, return_exceptions=True)
            logger.debug("Worker pool cancelled", cancelled=len(workers), dropped=dropped)
            return
        await self._queue.join()
        await self._retire_workers()
        logger.debug("Worker pool closed")
        self._raise_errors()
