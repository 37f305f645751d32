"""
Prowlcore - asynchronous HTTP crawler library.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .context import Context, ContextKind, new_context
from .crawler import Crawler, MultipartForm, Request, Response, body_field, query_field

__all__ = [
    "__version__",
    "Config",
    "Context",
    "ContextKind",
    "Crawler",
    "MultipartForm",
    "Request",
    "Response",
    "body_field",
    "new_context",
    "query_field",
]
