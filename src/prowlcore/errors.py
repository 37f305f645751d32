"""
Exception hierarchy for prowlcore.

Every error raised by the library derives from ProwlError. Proxy failures
carry the offending proxy address so callers and the pipeline can act on it
without parsing messages.
"""

from __future__ import annotations

from typing import Optional


class ProwlError(Exception):
    """Base class for all prowlcore errors."""


# --- Proxy errors ---


class ProxyError(ProwlError):
    """A failure attributable to a proxy endpoint."""

    def __init__(self, message: str, proxy: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.proxy = proxy

    def __str__(self) -> str:
        if self.proxy:
            return f"{self.message} [proxy={self.proxy}]"
        return self.message


class InvalidProxy(ProxyError):
    """The proxy URL is malformed (no host or no port)."""


class UnknownProtocol(ProxyError):
    """The proxy scheme is not one of http, https or socks5."""


class ProxyInvalid(ProxyError):
    """Dialing through the proxy failed."""


class ProxyUnableToConnect(ProxyInvalid):
    """The proxy answered the CONNECT handshake with a non-200 status."""

    def __init__(self, message: str, proxy: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, proxy)
        self.status = status


class ProxyExpired(ProxyError):
    """The proxy accepted no connection within the attempt's timeout."""


class EmptyProxyPool(ProxyError):
    """No proxy is left to select and none could be replenished."""


# Proxy failures that evict the proxy and transparently resubmit the request.
EVICTING_PROXY_ERRORS = (ProxyInvalid, ProxyExpired)


# --- Cache errors ---


class NoCacheSet(ProwlError):
    """A cache operation was requested but no cache is configured."""


class CacheFieldMissing(ProwlError):
    """A registered cache field is absent from the request."""

    def __init__(self, field: str, source: str, available: Optional[list] = None):
        self.field = field
        self.source = source
        self.available = sorted(available or [])
        super().__init__(f"there is no such field [{field}] in the {source}: {self.available}")


class CacheFieldTypeNotAllowed(ProwlError):
    """Only query-parameter cache fields are allowed for GET requests."""


# --- Worker pool errors ---


class PoolAlreadyClosed(ProwlError):
    """A task was submitted after the pool was closed."""


class InvalidPoolCap(ProwlError):
    """The worker pool capacity must be a positive integer."""


# --- Request errors ---


class RequestFailed(ProwlError):
    """The transport could not complete the request."""


class RequestTimeout(RequestFailed, TimeoutError):
    """A single transport attempt exceeded its timeout."""


class InvalidResponseStatus(RequestFailed):
    """The server answered 302 without a Location header."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status
