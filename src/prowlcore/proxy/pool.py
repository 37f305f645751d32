"""
Self-healing proxy pool.

Proxies are picked at random for every transport attempt and evicted as soon
as an attempt through them fails. When eviction empties the pool, the
optional replenisher is asked for fresh proxies.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

import structlog

from prowlcore.config.config import SUPPORTED_PROXY_SCHEMES, proxy_host_port
from prowlcore.errors import EmptyProxyPool, UnknownProtocol
from prowlcore.observability import increment

logger = structlog.get_logger(__name__)

Replenisher = Callable[[], Union[Iterable[str], Awaitable[Iterable[str]]]]


def proxy_scheme(proxy_url: str) -> str:
    scheme, sep, _ = proxy_url.partition("://")
    if not sep:
        raise UnknownProtocol("proxy URL has no scheme", proxy_url)
    scheme = scheme.lower()
    if scheme not in SUPPORTED_PROXY_SCHEMES:
        raise UnknownProtocol(f"unsupported proxy protocol: {scheme}", proxy_url)
    return scheme


class ProxyPool:
    """Ordered collection of proxy URLs guarded by one lock for lookup and eviction."""

    def __init__(self, proxies: Optional[Iterable[str]] = None, replenisher: Optional[Replenisher] = None):
        self._proxies: List[str] = []
        self._replenisher = replenisher
        self._lock = asyncio.Lock()
        for proxy in proxies or ():
            self._append(proxy)

    def _append(self, proxy_url: str) -> None:
        proxy_scheme(proxy_url)
        proxy_host_port(proxy_url)
        self._proxies.append(proxy_url)

    @property
    def replenisher(self) -> Optional[Replenisher]:
        return self._replenisher

    @replenisher.setter
    def replenisher(self, value: Optional[Replenisher]) -> None:
        self._replenisher = value

    def add(self, proxy_url: str) -> None:
        """Validate and append a proxy URL."""
        self._append(proxy_url)

    def snapshot(self) -> List[str]:
        return list(self._proxies)

    def size(self) -> int:
        return len(self._proxies)

    def __len__(self) -> int:
        return len(self._proxies)

    async def _replenish(self) -> int:
        if self._replenisher is None:
            return 0
        fresh: Any = self._replenisher()
        if inspect.isawaitable(fresh):
            fresh = await fresh
        added = 0
        for proxy in fresh or ():
            self._append(proxy)
            added += 1
        logger.info("Proxy pool replenished", added=added, size=len(self._proxies))
        return added

    async def select(self) -> str:
        """Uniformly random proxy. Raises EmptyProxyPool when none can be found."""
        async with self._lock:
            if not self._proxies:
                await self._replenish()
            if not self._proxies:
                raise EmptyProxyPool("the proxy pool is empty")
            return random.choice(self._proxies)

    async def remove(self, addr: str) -> bool:
        """
        Evict the first proxy whose ``host:port`` equals that of ``addr``.

        Returns False when no proxy matches, which happens when a concurrent
        attempt already evicted it. If the pool ends up empty it is
        replenished; if it is still empty EmptyProxyPool is raised.
        """
        target = proxy_host_port(addr)
        async with self._lock:
            index = next(
                (i for i, p in enumerate(self._proxies) if proxy_host_port(p) == target),
                None,
            )
            if index is None:
                logger.debug("Proxy already evicted", proxy=target)
                return False
            del self._proxies[index]
            increment("proxy_evictions")
            logger.debug("Invalid proxy evicted", proxy=target, remaining=len(self._proxies))

            if not self._proxies:
                await self._replenish()
                if not self._proxies:
                    raise EmptyProxyPool("the proxy pool is empty after removing an invalid proxy", target)
            return True
