"""Crawler, request/response types and the pieces of the request pipeline."""

from .crawler import Crawler
from .fingerprint import BodyKind, CacheField, FieldSource, body_field, canonical_url, fingerprint, query_field
from .form import MultipartForm
from .request import Request
from .response import Response
from .worker_pool import PoolState, WorkerPool

__all__ = [
    "BodyKind",
    "CacheField",
    "Crawler",
    "FieldSource",
    "MultipartForm",
    "PoolState",
    "Request",
    "Response",
    "WorkerPool",
    "body_field",
    "canonical_url",
    "fingerprint",
    "query_field",
]
