"""
Response handed to ``after_response``, HTML and JSON handlers.
"""

from __future__ import annotations

import base64
import json
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Union

from multidict import CIMultiDict

from prowlcore.context import Context

if TYPE_CHECKING:
    from prowlcore.crawler.request import Request


class Response:
    """
    Result of one request, from the network or from the cache.

    Pooled by the crawler like requests; handlers must not keep references.
    """

    __slots__ = ("status_code", "body", "headers", "from_cache", "request", "ctx", "invalid", "remote_addr")

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.status_code: int = 0
        self.body: bytes = b""
        self.headers: CIMultiDict = CIMultiDict()
        self.from_cache: bool = False
        self.request: Optional["Request"] = None
        self.ctx: Optional[Context] = None
        self.invalid: bool = False
        self.remote_addr: Optional[str] = None

    @property
    def text(self) -> str:
        return self.body.decode(self._charset() or "utf-8", errors="replace")

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    @property
    def status_text(self) -> str:
        try:
            return HTTPStatus(self.status_code).phrase
        except ValueError:
            return "Unknown Status Code"

    def _charset(self) -> Optional[str]:
        for param in self.content_type.split(";")[1:]:
            key, _, value = param.strip().partition("=")
            if key.lower() == "charset" and value:
                return value.strip('"')
        return None

    def get_set_cookie(self) -> str:
        """All ``Set-Cookie`` values joined with ``"; "``."""
        return "; ".join(self.headers.getall("Set-Cookie", []))

    def json(self) -> Any:
        return json.loads(self.body)

    def save(self, path: Union[str, Path]) -> None:
        Path(path).write_bytes(self.body)

    def invalidate(self) -> None:
        """Skip the remaining response handlers and all HTML/JSON handlers."""
        self.invalid = True

    def marshal(self) -> bytes:
        """Serialise status, body and headers for the response cache."""
        headers: List[List[str]] = [[k, v] for k, v in self.headers.items()]
        return json.dumps(
            {
                "status_code": self.status_code,
                "body": base64.b64encode(self.body).decode("ascii"),
                "headers": headers,
            },
            separators=(",", ":"),
        ).encode("utf-8")

    def load(self, raw: Union[bytes, str]) -> "Response":
        """Inverse of ``marshal``. Request and context are not part of the payload."""
        data = json.loads(raw)
        self.status_code = int(data["status_code"])
        self.body = base64.b64decode(data.get("body") or "")
        self.headers = CIMultiDict((k, v) for k, v in data.get("headers") or [])
        return self

    def __repr__(self) -> str:
        return f"<Response [{self.status_code}] from_cache={self.from_cache}>"
