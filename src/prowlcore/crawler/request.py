"""
Outgoing request handed to ``before_request`` handlers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from multidict import CIMultiDict

from prowlcore.config.config import proxy_host_port
from prowlcore.context import Context
from prowlcore.crawler.fingerprint import BodyKind
from prowlcore.proxy.pool import proxy_scheme

if TYPE_CHECKING:
    from prowlcore.crawler.crawler import Crawler


class Request:
    """
    One request flowing through a crawler's pipeline.

    Instances are pooled by their crawler: do not keep a reference after the
    handlers have returned.
    """

    __slots__ = (
        "method",
        "url",
        "headers",
        "body",
        "body_map",
        "body_kind",
        "ctx",
        "id",
        "aborted",
        "retry_counter",
        "crawler",
        "timeout",
        "max_redirects",
        "proxy",
        "_owns_ctx",
    )

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.method: str = "GET"
        self.url: str = ""
        self.headers: CIMultiDict = CIMultiDict()
        self.body: Optional[bytes] = None
        self.body_map: Optional[Any] = None
        self.body_kind: Optional[BodyKind] = None
        self.ctx: Optional[Context] = None
        self.id: int = 0
        self.aborted: bool = False
        self.retry_counter: int = 0
        self.crawler: Optional["Crawler"] = None
        self.timeout: Optional[float] = None
        self.max_redirects: int = 0
        self.proxy: Optional[str] = None
        self._owns_ctx: bool = False

    def abort(self) -> None:
        """Stop the pipeline before the transport is used. Not an error."""
        self.aborted = True

    def set_headers(self, headers: Mapping[str, str]) -> None:
        for key, value in headers.items():
            self.headers[key] = value

    def set_content_type(self, content_type: str) -> None:
        self.headers["Content-Type"] = content_type

    def get_header(self, key: str, default: str = "") -> str:
        return self.headers.get(key, default)

    def allow_redirect(self, max_redirects: int) -> None:
        """Follow up to ``max_redirects`` redirects; 0 disables redirects."""
        if max_redirects < 0:
            raise ValueError("max_redirects must not be negative")
        self.max_redirects = max_redirects

    def set_proxy(self, proxy_url: str) -> None:
        """Send this request through ``proxy_url`` instead of the crawler's pool."""
        proxy_scheme(proxy_url)
        proxy_host_port(proxy_url)
        self.proxy = proxy_url

    def set_timeout(self, seconds: Optional[float]) -> None:
        """Override the crawler timeout for each attempt of this request."""
        if seconds is not None and seconds <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = seconds

    def __repr__(self) -> str:
        return f"<Request id={self.id} {self.method} {self.url}>"
