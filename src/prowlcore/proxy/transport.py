"""
aiohttp transport.

Turns a resolved request into one HTTP exchange, optionally through an
http(s) or socks5 proxy, and converts aiohttp / aiohttp_socks failures into
prowlcore's typed errors at this boundary.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import unquote, urlsplit

import aiohttp
import structlog
import yarl
from aiohttp_socks import ProxyConnectionError as SocksConnectionError
from aiohttp_socks import ProxyConnector
from aiohttp_socks import ProxyError as SocksError
from aiohttp_socks import ProxyTimeoutError as SocksTimeoutError
from aiohttp_socks import ProxyType
from multidict import CIMultiDict

from prowlcore.config.config import proxy_host_port
from prowlcore.errors import (
    InvalidResponseStatus,
    ProwlError,
    ProxyExpired,
    ProxyInvalid,
    ProxyUnableToConnect,
    RequestFailed,
    RequestTimeout,
)
from prowlcore.observability import histogram
from prowlcore.proxy.pool import proxy_scheme

logger = structlog.get_logger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
DEFAULT_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass
class RawResponse:
    """What came back over the wire for one attempt."""

    status: int
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""
    remote_addr: Optional[str] = None
    url: Optional[str] = None


def proxy_connector(proxy_url: str, limit: int = 100) -> ProxyConnector:
    """
    Build the connector that dials every target through ``proxy_url``.

    http and https proxies are both tunnelled with ``CONNECT host:port`` over
    plain HTTP, whatever the target scheme, with Basic auth taken from the
    URL's userinfo. socks5 proxies resolve target names remotely.
    """
    if proxy_scheme(proxy_url) == "socks5":
        return ProxyConnector.from_url(proxy_url, rdns=True, limit=limit)
    parts = urlsplit(proxy_url)
    username = password = None
    if parts.username is not None:
        username, password = unquote(parts.username), unquote(parts.password or "")
    return ProxyConnector(
        proxy_type=ProxyType.HTTP,
        host=parts.hostname,
        port=parts.port,
        username=username,
        password=password,
        limit=limit,
    )


def _proxy_cause(exc: BaseException) -> Optional[BaseException]:
    """The python-socks error behind ``exc``, if aiohttp wrapped one."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, (SocksError, SocksConnectionError, SocksTimeoutError)):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def map_transport_error(exc: BaseException, proxy_url: Optional[str] = None) -> ProwlError:
    """
    Convert an exception raised while talking to aiohttp into a typed error.

    Failures attributable to the proxy carry its ``host:port``. A non-200
    answer to CONNECT becomes ProxyUnableToConnect with the proxy's status.
    """
    addr = proxy_host_port(proxy_url) if proxy_url else None

    if isinstance(exc, ProwlError):
        return exc
    if addr:
        exc = _proxy_cause(exc) or exc
    if addr and isinstance(exc, SocksTimeoutError):
        return ProxyExpired(f"proxy did not answer in time: {exc}", addr)
    if addr and isinstance(exc, aiohttp.ConnectionTimeoutError):
        return ProxyExpired(f"connecting through the proxy timed out: {exc}", addr)
    if addr and isinstance(exc, aiohttp.ClientHttpProxyError):
        return ProxyUnableToConnect(
            f"proxy refused the CONNECT tunnel with status {exc.status}", addr, status=exc.status
        )
    if addr and isinstance(exc, SocksError) and proxy_scheme(proxy_url) != "socks5":
        status = getattr(exc, "error_code", None)
        return ProxyUnableToConnect(f"proxy refused the CONNECT tunnel: {exc}", addr, status=status)
    if addr and isinstance(exc, (SocksConnectionError, SocksError)):
        return ProxyInvalid(f"proxy handshake failed: {exc}", addr)
    if addr and isinstance(exc, aiohttp.ClientConnectorError):
        return ProxyInvalid(f"cannot connect to proxy: {exc}", addr)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return RequestTimeout(f"request timed out: {str(exc) or type(exc).__name__}")
    if isinstance(exc, aiohttp.ClientError):
        return RequestFailed(f"request failed: {exc}")
    if isinstance(exc, OSError):
        return RequestFailed(f"request failed: {exc}")
    raise exc


class Transport:
    """Owns the aiohttp sessions a crawler sends through."""

    def __init__(self, connector_limit: int = 100):
        self._connector_limit = connector_limit
        self._session: Optional[aiohttp.ClientSession] = None
        self._proxy_sessions: Dict[str, aiohttp.ClientSession] = {}
        self._lock: Optional[asyncio.Lock] = None

    def _new_session(self, connector: Optional[aiohttp.BaseConnector] = None) -> aiohttp.ClientSession:
        if connector is None:
            connector = aiohttp.TCPConnector(limit=self._connector_limit, enable_cleanup_closed=True)
        return aiohttp.ClientSession(
            connector=connector,
            cookie_jar=aiohttp.DummyCookieJar(),
            timeout=aiohttp.ClientTimeout(total=None),
            auto_decompress=True,
        )

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = self._new_session()
            self._lock = asyncio.Lock()
            logger.debug("Transport session opened")

    async def _session_for(self, proxy_url: Optional[str]) -> aiohttp.ClientSession:
        await self.start()
        assert self._session is not None and self._lock is not None
        if not proxy_url:
            return self._session
        async with self._lock:
            session = self._proxy_sessions.get(proxy_url)
            if session is None or session.closed:
                session = self._new_session(proxy_connector(proxy_url, self._connector_limit))
                self._proxy_sessions[proxy_url] = session
            return session

    async def discard_proxy(self, proxy_url: str) -> None:
        """Close the dedicated session of an evicted proxy, if any."""
        if self._lock is None:
            return
        async with self._lock:
            session = self._proxy_sessions.pop(proxy_url, None)
        if session is not None:
            await session.close()

    async def close(self) -> None:
        sessions = list(self._proxy_sessions.values())
        self._proxy_sessions.clear()
        if self._session is not None:
            sessions.append(self._session)
            self._session = None
        for session in sessions:
            await session.close()
        logger.debug("Transport closed", sessions=len(sessions))

    async def __aenter__(self) -> "Transport":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def send(
        self,
        method: str,
        url: str,
        headers: CIMultiDict,
        body: Optional[bytes] = None,
        proxy: Optional[str] = None,
        timeout: Optional[float] = None,
        max_redirects: int = 0,
    ) -> RawResponse:
        """
        Perform one HTTP exchange.

        ``timeout`` bounds this attempt only. Redirects are followed only
        when ``max_redirects`` is positive.
        """
        method = method.upper()
        headers = CIMultiDict(headers)
        if "Accept" not in headers:
            headers["Accept"] = "*/*"
        if method in BODY_METHODS and body and "Content-Type" not in headers:
            headers["Content-Type"] = DEFAULT_CONTENT_TYPE

        session = await self._session_for(proxy)
        client_timeout = aiohttp.ClientTimeout(total=timeout, sock_connect=timeout)

        started = time.perf_counter()
        try:
            async with session.request(
                method,
                yarl.URL(url, encoded=True),
                headers=headers,
                data=body if body else None,
                allow_redirects=max_redirects > 0,
                max_redirects=max(max_redirects, 1),
                timeout=client_timeout,
            ) as resp:
                remote_addr = _peer_name(resp)
                content = await resp.read()
                raw = RawResponse(
                    status=resp.status,
                    headers=CIMultiDict(resp.headers),
                    body=content,
                    remote_addr=remote_addr,
                    url=str(resp.url),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, SocksError) as e:
            raise map_transport_error(e, proxy) from e
        finally:
            histogram("transport_latency", time.perf_counter() - started)

        if raw.status == 302 and "Location" not in raw.headers:
            raise InvalidResponseStatus("302 response without a Location header", raw.status)
        return raw


def _peer_name(resp: aiohttp.ClientResponse) -> Optional[str]:
    if resp.connection is None or resp.connection.transport is None:
        return None
    peer = resp.connection.transport.get_extra_info("peername")
    if not peer:
        return None
    return f"{peer[0]}:{peer[1]}"

