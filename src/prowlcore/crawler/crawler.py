"""
The crawler: handler registries plus the request pipeline.

A request goes through header seeding, ``before_request`` handlers, the
response cache, the transport (with proxy eviction and bounded retry), the
cache write, and finally the response, HTML and JSON handlers. With a worker
pool configured, dispatch methods only enqueue the request.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import itertools
import json
import threading
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

import structlog
from multidict import CIMultiDict
from tenacity import AsyncRetrying, RetryCallState, wait_none

from prowlcore.cache import Cache, build_cache
from prowlcore.config.config import Config
from prowlcore.context import Context, ContextKind, new_context
from prowlcore.crawler.fingerprint import BodyKind, CacheField, canonical_url, fingerprint
from prowlcore.crawler.form import MultipartForm
from prowlcore.crawler.request import Request
from prowlcore.crawler.response import Response
from prowlcore.crawler.worker_pool import WorkerPool
from prowlcore.errors import EVICTING_PROXY_ERRORS, NoCacheSet, RequestFailed, RequestTimeout
from prowlcore.observability import configure_logging, increment, status_class
from prowlcore.parsers.html import HTMLElement, parse_html, select
from prowlcore.parsers.json_result import JSONResult
from prowlcore.proxy.pool import ProxyPool, Replenisher
from prowlcore.proxy.transport import RawResponse, Transport
from prowlcore.utils.object_pool import ObjectPool

logger = structlog.get_logger(__name__)

RequestHandler = Callable[[Request], Optional[Awaitable[None]]]
ResponseHandler = Callable[[Response], Optional[Awaitable[None]]]
HTMLHandler = Callable[[HTMLElement, Response], Optional[Awaitable[None]]]
JSONHandler = Callable[[JSONResult, Response], Optional[Awaitable[None]]]
ResponsePredicate = Callable[[Response], Union[bool, Awaitable[bool]]]

CACHEABLE_STATUSES = frozenset({200, 201})


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Crawler:
    """
    Reusable HTTP client with lifecycle hooks.

    Callables and backend instances are keyword arguments; everything that can
    be expressed as settings comes from ``config``.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        cache: Optional[Cache] = None,
        cache_fields: Iterable[CacheField] = (),
        cache_condition: Optional[ResponsePredicate] = None,
        retry_condition: Optional[ResponsePredicate] = None,
        replenish_proxy_pool: Optional[Replenisher] = None,
        proxy_invalid_condition: Optional[ResponsePredicate] = None,
        transport: Optional[Transport] = None,
    ):
        self.config = config or Config()
        configure_logging(self.config.logging)

        crawler_config = self.config.crawler
        self.user_agent = crawler_config.user_agent
        self.cookies = dict(crawler_config.cookies)
        self.timeout = crawler_config.timeout
        self.context_kind = ContextKind(crawler_config.context_kind)
        self.retry_count = crawler_config.retry_count
        self.retry_condition = retry_condition

        self.cache = cache if cache is not None else build_cache(self.config.cache)
        if cache is not None and self.config.cache.compressed:
            cache.set_compression(True)
        self.cache_fields: List[CacheField] = list(cache_fields)
        self.cache_condition = cache_condition
        self._cache_lock = asyncio.Lock()

        self.proxy_pool = ProxyPool(self.config.proxy.urls, replenish_proxy_pool)
        self.proxy_invalid_condition = proxy_invalid_condition

        self.transport = transport or Transport()
        self._owns_transport = transport is None

        self.pool: Optional[WorkerPool] = None
        if crawler_config.concurrency:
            self.pool = WorkerPool(crawler_config.concurrency, crawler_config.block_panic, self._drop_job)

        self._lock = threading.RLock()
        self._request_handlers: List[RequestHandler] = []
        self._response_handlers: List[ResponseHandler] = []
        self._html_handlers: List[Tuple[str, HTMLHandler]] = []
        self._json_handlers: List[Tuple[bool, JSONHandler]] = []

        self._ids = itertools.count(1)
        self._request_count = 0
        self._response_count = 0
        self._counter_lock = threading.Lock()

        self._ctx_pool: ObjectPool[Context] = ObjectPool(lambda: new_context(self.context_kind), lambda c: c.clear())
        self._request_pool: ObjectPool[Request] = ObjectPool(Request, Request.reset)
        self._response_pool: ObjectPool[Response] = ObjectPool(Response, Response.reset)

        logger.info(
            "Crawler initialized",
            user_agent=self.user_agent,
            concurrency=crawler_config.concurrency,
            retry_count=self.retry_count,
            proxies_count=self.proxy_pool.size(),
            cache=type(self.cache).__name__ if self.cache else None,
        )

    # --- Handler registration ---

    def before_request(self, func: RequestHandler) -> RequestHandler:
        """Register a handler run on every request before it is sent. Usable as a decorator."""
        with self._lock:
            self._request_handlers.append(func)
        return func

    def after_response(self, func: ResponseHandler) -> ResponseHandler:
        with self._lock:
            self._response_handlers.append(func)
        return func

    def parse_html(self, selector: str, func: Optional[HTMLHandler] = None):
        """
        Call ``func(element, response)`` for every element matching
        ``selector`` in HTML responses.

        Without ``func`` this returns a decorator.
        """
        if func is None:
            return functools.partial(self.parse_html, selector)
        with self._lock:
            self._html_handlers.append((selector, func))
        return func

    def parse_json(self, strict: bool, func: Optional[JSONHandler] = None):
        """
        Call ``func(result, response)`` with the decoded body of every response.

        With ``strict`` only responses whose Content-Type contains
        ``application/json`` are handled.
        """
        if func is None:
            return functools.partial(self.parse_json, strict)
        with self._lock:
            if self._json_handlers:
                logger.warning("Several JSON handlers registered; each one re-reads the parsed body")
            self._json_handlers.append((strict, func))
        return func

    # --- Settings ---

    def set_concurrency(self, count: int, block_panic: bool = False) -> None:
        if self.pool is not None:
            raise RuntimeError("concurrency is already set for this crawler")
        self.pool = WorkerPool(count, block_panic, self._drop_job)

    def set_retry(self, count: int, condition: Optional[ResponsePredicate]) -> None:
        if count < 0:
            raise ValueError("retry count must not be negative")
        self.retry_count = count
        self.retry_condition = condition

    def set_cache(
        self,
        cache: Cache,
        compressed: bool = False,
        cache_condition: Optional[ResponsePredicate] = None,
        *cache_fields: CacheField,
    ) -> None:
        cache.set_compression(compressed)
        self.cache = cache
        self.cache_condition = cache_condition
        self.cache_fields = list(cache_fields)

    def unset_cache(self) -> None:
        self.cache = None
        self.cache_condition = None
        self.cache_fields = []

    def add_proxy(self, proxy_url: str) -> None:
        self.proxy_pool.add(proxy_url)

    def add_cookie(self, name: str, value: str) -> None:
        with self._lock:
            self.cookies[name] = value

    def set_proxy_invalid_condition(self, condition: Optional[ResponsePredicate]) -> None:
        self.proxy_invalid_condition = condition

    # --- Introspection ---

    @property
    def proxy_pool_size(self) -> int:
        return self.proxy_pool.size()

    @property
    def concurrency_state(self) -> bool:
        return self.pool is not None

    @property
    def request_count(self) -> int:
        return self._request_count

    @property
    def response_count(self) -> int:
        return self._response_count

    # --- Lifecycle ---

    async def start(self) -> "Crawler":
        await self.transport.start()
        if self.cache is not None:
            await self._ensure_cache()
        return self

    async def wait(self) -> None:
        """Wait for every queued request to finish. No-op without a worker pool."""
        if self.pool is not None:
            await self.pool.wait()

    async def clear_cache(self) -> None:
        if self.cache is None:
            raise NoCacheSet("no cache configured")
        await self._ensure_cache()
        await self.cache.clear()

    async def close(self, cancel: bool = False) -> None:
        """Drain (or cancel) the worker pool, then close the transport and cache."""
        try:
            if self.pool is not None:
                await self.pool.close(cancel=cancel)
        finally:
            if self._owns_transport:
                await self.transport.close()
            if self.cache is not None and self.cache.initialized:
                await self.cache.close()
        logger.info("Crawler closed", requests=self._request_count, responses=self._response_count)

    async def __aenter__(self) -> "Crawler":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close(cancel=exc_type is not None)

    def clone(self) -> "Crawler":
        """
        A crawler with the same settings, cache and proxies, but no handlers
        and its own worker pool.
        """
        config = self.config.model_copy(deep=True)
        config.proxy.urls = self.proxy_pool.snapshot()
        config.crawler.cookies = dict(self.cookies)
        config.crawler.retry_count = self.retry_count
        config.crawler.concurrency = self.pool.capacity if self.pool else None
        config.crawler.block_panic = self.pool.block_panic if self.pool else False
        config.logging = None
        return Crawler(
            config,
            cache=self.cache,
            cache_fields=self.cache_fields,
            cache_condition=self.cache_condition,
            retry_condition=self.retry_condition,
            replenish_proxy_pool=self.proxy_pool.replenisher,
            proxy_invalid_condition=self.proxy_invalid_condition,
        )

    # --- Dispatch ---

    async def get(self, url: str, headers: Optional[Mapping[str, str]] = None) -> None:
        await self.request("GET", url, headers=headers)

    async def get_with_context(self, url: str, ctx: Optional[Context]) -> None:
        await self.request("GET", url, ctx=ctx)

    async def post(
        self,
        url: str,
        form: Optional[Mapping[str, str]],
        ctx: Optional[Context] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        merged = CIMultiDict(headers or {})
        merged.setdefault("Content-Type", "application/x-www-form-urlencoded")
        body = urlencode(list(form.items())).encode("ascii") if form is not None else None
        await self.request(
            "POST", url, body, merged, ctx, body_map=dict(form or {}), body_kind=BodyKind.FORM
        )

    async def post_json(
        self, url: str, data: Any, ctx: Optional[Context] = None, headers: Optional[Mapping[str, str]] = None
    ) -> None:
        merged = CIMultiDict(headers or {})
        merged["Content-Type"] = "application/json"
        body = json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8") if data is not None else None
        await self.request("POST", url, body, merged, ctx, body_map=data, body_kind=BodyKind.JSON)

    async def post_multipart(
        self, url: str, form: MultipartForm, ctx: Optional[Context] = None, headers: Optional[Mapping[str, str]] = None
    ) -> None:
        merged = CIMultiDict(headers or {})
        merged["Content-Type"] = form.content_type
        await self.request(
            "POST", url, form.to_bytes(), merged, ctx, body_map=form.body_map, body_kind=BodyKind.MULTIPART
        )

    async def post_raw(self, url: str, body: bytes, ctx: Optional[Context] = None) -> None:
        await self.request("POST", url, body, None, ctx, body_kind=BodyKind.RAW)

    async def request(
        self,
        method: str,
        url: str,
        body: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
        ctx: Optional[Context] = None,
        *,
        body_map: Optional[Any] = None,
        body_kind: Optional[BodyKind] = None,
    ) -> None:
        """
        Build a request and run it through the pipeline.

        Inline (no worker pool, or called from a worker) this returns after
        every handler has run; otherwise it returns once the request is queued.
        """
        request = self._request_pool.acquire()
        try:
            request.method = method.upper()
            request.url = canonical_url(url)
            request.headers = self._seed_headers(headers)
            request.body = body
            request.body_map = body_map
            request.body_kind = body_kind
            request.crawler = self
            request.timeout = self.timeout
            if ctx is None:
                ctx = self._ctx_pool.acquire()
                request._owns_ctx = True
            request.ctx = ctx

            if self.cache is not None and self.cache_fields:
                # Surface cache field mistakes to the caller, not to a worker.
                self._fingerprint(request)

            with self._counter_lock:
                self._request_count += 1
            request.id = next(self._ids)
            increment("requests_total")

            if self.pool is not None and not self.pool.in_worker():
                await self.pool.submit(functools.partial(self._process, request))
                return
        except BaseException:
            self._release(request, None)
            raise

        await self._process(request)

    # --- Pipeline ---

    def _seed_headers(self, headers: Optional[Mapping[str, str]]) -> CIMultiDict:
        seeded: CIMultiDict = CIMultiDict()
        seeded["User-Agent"] = self.user_agent
        with self._lock:
            cookies = dict(self.cookies)
        if cookies:
            seeded["Cookie"] = "; ".join(f"{k}={v}" for k, v in cookies.items())
        if headers:
            for key, value in headers.items():
                seeded[key] = value
        return seeded

    def _fingerprint(self, request: Request) -> str:
        return fingerprint(
            request.method,
            request.url,
            self.cache_fields,
            body_map=request.body_map,
            body_kind=request.body_kind,
            raw_body=request.body,
        )

    def _release(self, request: Request, response: Optional[Response]) -> None:
        if response is not None:
            self._response_pool.release(response)
        if request._owns_ctx:
            self._ctx_pool.release(request.ctx)
        self._request_pool.release(request)

    def _drop_job(self, job: Callable[[], Awaitable[None]]) -> None:
        """Release the request of a queued job that a cancelling close discarded."""
        request = job.args[0] if isinstance(job, functools.partial) and job.args else None
        if isinstance(request, Request):
            logger.debug("Queued request dropped", request_id=request.id, url=request.url)
            self._release(request, None)

    async def _process(self, request: Request) -> None:
        response: Optional[Response] = None
        try:
            with structlog.contextvars.bound_contextvars(request_id=request.id):
                response = await self._run(request)
        finally:
            self._release(request, response)

    async def _run(self, request: Request) -> Optional[Response]:
        with self._lock:
            request_handlers = list(self._request_handlers)
        for handler in request_handlers:
            await _call(handler, request)

        if request.aborted:
            logger.debug("Request aborted", request_id=request.id)
            return None

        logger.info(
            "Requesting", request_id=request.id, method=request.method, url=request.url, timeout=request.timeout
        )
        if len(request.ctx) > 0:
            logger.debug("Using context", context=request.ctx.to_json_string())

        key: Optional[str] = None
        response: Optional[Response] = None
        cache = self.cache
        if cache is not None:
            await self._ensure_cache()
            key = self._fingerprint(request)
            logger.debug("Generated cache key", request_id=request.id, cache_key=key)
            response = await self._check_cache(cache, key)

        if response is not None:
            response.request = request
            response.ctx = request.ctx
            increment("cache_hits")
            logger.debug("Response found in cache", request_id=request.id, cache_key=key)
        else:
            if cache is not None:
                increment("cache_misses")
            response = await self._fetch(request)
            if cache is not None and key is not None and await self._cacheable(response):
                await cache.cache(key, response.marshal())

        self._log_response(request, response)
        await self._handle_response(response)
        return response

    async def _ensure_cache(self) -> None:
        cache = self.cache
        if cache is None or cache.initialized:
            return
        async with self._cache_lock:
            if not cache.initialized:
                await cache.init()

    async def _check_cache(self, cache: Cache, key: str) -> Optional[Response]:
        raw, found = await cache.is_cached(key)
        if not found or raw is None:
            return None
        response = self._response_pool.acquire()
        try:
            response.load(raw)
        except (ValueError, KeyError, TypeError):
            self._response_pool.release(response)
            logger.error("Cached response is corrupt", cache_key=key)
            raise
        response.from_cache = True
        return response

    async def _cacheable(self, response: Response) -> bool:
        if self.cache_condition is not None:
            return bool(await _call(self.cache_condition, response))
        return response.status_code in CACHEABLE_STATUSES

    async def _fetch(self, request: Request) -> Response:
        """Send the request, repeating it while the retry policy asks for it."""
        wants_retry = False

        def should_retry(retry_state: RetryCallState) -> bool:
            if request.retry_counter >= self.retry_count:
                return False
            outcome = retry_state.outcome
            if outcome is None:
                return False
            if outcome.failed:
                return isinstance(outcome.exception(), RequestTimeout)
            return wants_retry

        def before_retry(retry_state: RetryCallState) -> None:
            request.retry_counter += 1
            increment("retries")
            outcome = retry_state.outcome
            reason = "timeout"
            if outcome is not None and not outcome.failed:
                stale = outcome.result()
                reason = f"status {stale.status_code}"
                self._response_pool.release(stale)
            logger.warning(
                "Retrying",
                request_id=request.id,
                retry_count=request.retry_counter,
                method=request.method,
                url=request.url,
                reason=reason,
            )

        response: Optional[Response] = None
        async for attempt in AsyncRetrying(retry=should_retry, before_sleep=before_retry, wait=wait_none(), reraise=True):
            response = None
            with attempt:
                response = await self._send(request)
                try:
                    wants_retry = (
                        self.retry_condition is not None
                        and request.retry_counter < self.retry_count
                        and bool(await _call(self.retry_condition, response))
                    )
                except BaseException:
                    self._response_pool.release(response)
                    response = None
                    raise
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(response)
        if response is None:
            raise RequestFailed(f"no response for {request.method} {request.url}")
        return response

    async def _send(self, request: Request) -> Response:
        """
        One logical attempt. Proxies failing during it are evicted and the
        attempt is repeated with another proxy.
        """
        while True:
            proxy = request.proxy
            from_pool = False
            if proxy is None and self.proxy_pool.size() > 0:
                proxy = await self.proxy_pool.select()
                from_pool = True

            try:
                raw = await self.transport.send(
                    request.method,
                    request.url,
                    request.headers,
                    request.body,
                    proxy=proxy,
                    timeout=request.timeout,
                    max_redirects=request.max_redirects,
                )
            except EVICTING_PROXY_ERRORS as e:
                if not from_pool:
                    raise
                logger.warning("Proxy is invalid", proxy=e.proxy, error=str(e), request_id=request.id)
                await self._evict(proxy)
                continue

            response = self._build_response(request, raw)
            with self._counter_lock:
                self._response_count += 1
            increment("responses_total", labels={"status_class": status_class(response.status_code)})

            if from_pool and self.proxy_invalid_condition is not None:
                if await _call(self.proxy_invalid_condition, response):
                    logger.warning("Response marks proxy as invalid", proxy=proxy, status_code=response.status_code)
                    self._response_pool.release(response)
                    await self._evict(proxy)
                    continue
            return response

    async def _evict(self, proxy: str) -> None:
        try:
            await self.proxy_pool.remove(proxy)
        finally:
            await self.transport.discard_proxy(proxy)
        logger.info("Removed invalid proxy", invalid_proxy=proxy, remaining=self.proxy_pool.size())

    def _build_response(self, request: Request, raw: RawResponse) -> Response:
        response = self._response_pool.acquire()
        response.status_code = raw.status
        response.body = raw.body
        response.headers = raw.headers
        response.remote_addr = raw.remote_addr
        response.request = request
        response.ctx = request.ctx
        return response

    def _log_response(self, request: Request, response: Response) -> None:
        fields = {
            "request_id": request.id,
            "method": request.method,
            "status_code": response.status_code,
            "from_cache": response.from_cache,
        }
        if response.status_code == 302:
            fields["location"] = response.headers.get("Location", "")
        elif not response.from_cache:
            if self.proxy_pool.size() > 0 or request.proxy:
                fields["proxy"] = response.remote_addr
            else:
                fields["server_addr"] = response.remote_addr
        logger.info("Response", **fields)

    async def _handle_response(self, response: Response) -> None:
        with self._lock:
            response_handlers = list(self._response_handlers)
            html_handlers = list(self._html_handlers)
            json_handlers = list(self._json_handlers)

        for handler in response_handlers:
            if response.invalid:
                break
            await _call(handler, response)
        if response.invalid:
            return

        content_type = response.content_type.lower()
        if html_handlers:
            if "html" in content_type:
                tree = parse_html(response.body)
                for selector, handler in html_handlers:
                    if response.invalid:
                        break
                    for element in select(tree, selector):
                        await _call(handler, element, response)
            else:
                logger.debug("Response is not HTML", content_type=response.content_type)

        if json_handlers and not response.invalid:
            result = JSONResult.parse(response.body)
            for strict, handler in json_handlers:
                if strict and "application/json" not in content_type:
                    logger.debug("Response is not JSON", content_type=response.content_type)
                    continue
                await _call(handler, result, response)
