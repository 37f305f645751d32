"""
Request fingerprinting for the response cache.

A fingerprint is the SHA-1 of a compact JSON object built from the request
method, its canonical URL and the values selected by the crawler's cache
fields. Two requests with equal fingerprints are answered by the same cached
response.
"""

from __future__ import annotations

import base64
import enum
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from prowlcore.errors import CacheFieldMissing, CacheFieldTypeNotAllowed
from prowlcore.parsers.json_result import MISSING, lookup_path


class FieldSource(enum.IntEnum):
    QUERY = 0
    BODY = 1


class BodyKind(str, enum.Enum):
    FORM = "form"
    JSON = "json"
    MULTIPART = "multipart"
    RAW = "raw"


@dataclass(frozen=True)
class CacheField:
    """Names a query or body parameter whose value takes part in the fingerprint."""

    source: FieldSource
    name: str
    prepare: Optional[Callable[[str], str]] = None

    @property
    def key(self) -> str:
        return f"{int(self.source)}-{self.name}"

    def __str__(self) -> str:
        return self.key


def query_field(name: str, prepare: Optional[Callable[[str], str]] = None) -> CacheField:
    return CacheField(FieldSource.QUERY, name, prepare)


def body_field(name: str, prepare: Optional[Callable[[str], str]] = None) -> CacheField:
    return CacheField(FieldSource.BODY, name, prepare)


def canonical_url(url: str) -> str:
    """Re-encode the query with keys in sorted order and drop the fragment."""
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    params.sort(key=lambda kv: kv[0])
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), ""))


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _query_value(params: List[Tuple[str, str]], field: CacheField) -> str:
    for k, v in params:
        if k == field.name:
            return v
    raise CacheFieldMissing(field.name, "query parameters", [k for k, _ in params])


def _body_value(body_map: Any, body_kind: Optional[BodyKind], field: CacheField) -> Any:
    if body_kind is BodyKind.JSON:
        value = lookup_path(body_map, field.name)
        if value is MISSING:
            available = list(body_map) if isinstance(body_map, Mapping) else []
            raise CacheFieldMissing(field.name, "request body", available)
        return value
    if isinstance(body_map, Mapping) and field.name in body_map:
        return body_map[field.name]
    available = list(body_map) if isinstance(body_map, Mapping) else []
    raise CacheFieldMissing(field.name, "request body", available)


def fingerprint(
    method: str,
    url: str,
    cache_fields: Iterable[CacheField] = (),
    body_map: Optional[Any] = None,
    body_kind: Optional[BodyKind] = None,
    raw_body: Optional[bytes] = None,
) -> str:
    """
    Compute the cache key of a request.

    Raises CacheFieldTypeNotAllowed for body fields on GET requests and
    CacheFieldMissing when a field is absent. A field whose key is present
    with an empty value still counts as present.
    """
    method = method.upper()
    canonical = canonical_url(url)
    pairs: Dict[str, str] = {"method": method, "url": canonical}

    fields = list(cache_fields)
    query_params: Optional[List[Tuple[str, str]]] = None
    for field in fields:
        if field.source is FieldSource.QUERY:
            if query_params is None:
                query_params = parse_qsl(urlsplit(url).query, keep_blank_values=True)
            value: Any = _query_value(query_params, field)
        else:
            if method == "GET":
                raise CacheFieldTypeNotAllowed(
                    f"only query parameters are allowed as cache fields in GET requests, got [{field.name}]"
                )
            value = _body_value(body_map, body_kind, field)
        rendered = _render(value)
        if field.prepare is not None:
            rendered = field.prepare(rendered)
        pairs[field.key] = rendered

    # Raw bodies have no fields to select from, so the whole body identifies them.
    if body_kind is BodyKind.RAW and raw_body:
        pairs["raw"] = base64.b64encode(raw_body).decode("ascii")

    ordered = dict(sorted(pairs.items()))
    payload = json.dumps(ordered, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()
