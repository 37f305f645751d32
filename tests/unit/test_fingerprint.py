"""
Tests for request fingerprinting and URL canonicalisation.
"""

import base64
import hashlib
import json

import pytest

from prowlcore.crawler import BodyKind, body_field, canonical_url, fingerprint, query_field
from prowlcore.errors import CacheFieldMissing, CacheFieldTypeNotAllowed


def _expected(pairs):
    payload = json.dumps(dict(sorted(pairs.items())), ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


@pytest.mark.unit
class TestCanonicalUrl:
    def test_query_keys_sorted(self):
        assert canonical_url("http://x.test/p?b=2&a=1") == "http://x.test/p?a=1&b=2"

    def test_fragment_dropped_blank_values_kept(self):
        assert canonical_url("http://x.test/p?z=&a=1#frag") == "http://x.test/p?a=1&z="

    def test_no_query(self):
        assert canonical_url("http://x.test/") == "http://x.test/"


@pytest.mark.unit
class TestFingerprint:
    def test_plain_get(self):
        key = fingerprint("get", "http://x.test/p?b=2&a=1")
        assert key == _expected({"method": "GET", "url": "http://x.test/p?a=1&b=2"})
        assert len(key) == 40

    def test_query_order_does_not_matter(self):
        assert fingerprint("GET", "http://x.test/?a=1&b=2") == fingerprint("GET", "http://x.test/?b=2&a=1")

    def test_query_field_included(self):
        fields = [query_field("id")]
        key = fingerprint("GET", "http://x.test/?id=7&t=1", fields)
        assert key == _expected({"method": "GET", "url": "http://x.test/?id=7&t=1", "0-id": "7"})

    def test_changing_selected_value_changes_key(self):
        fields = [query_field("id")]
        assert fingerprint("GET", "http://x.test/?id=1", fields) != fingerprint("GET", "http://x.test/?id=2", fields)

    def test_prepare_normalises_value(self):
        fields = [query_field("q", prepare=str.lower)]
        upper = fingerprint("GET", "http://x.test/?q=A", fields)
        key = _expected({"method": "GET", "url": "http://x.test/?q=A", "0-q": "a"})
        assert upper == key

    def test_missing_query_field(self):
        with pytest.raises(CacheFieldMissing) as excinfo:
            fingerprint("GET", "http://x.test/?a=1", [query_field("id")])
        assert excinfo.value.field == "id"
        assert excinfo.value.available == ["a"]

    def test_blank_query_value_counts_as_present(self):
        fingerprint("GET", "http://x.test/?id=", [query_field("id")])

    def test_body_field_rejected_on_get(self):
        with pytest.raises(CacheFieldTypeNotAllowed):
            fingerprint("GET", "http://x.test/", [body_field("name")])

    def test_form_body_field(self):
        key = fingerprint(
            "POST", "http://x.test/login", [body_field("name")], body_map={"name": "tom"}, body_kind=BodyKind.FORM
        )
        assert key == _expected({"method": "POST", "url": "http://x.test/login", "1-name": "tom"})

    def test_missing_body_field(self):
        with pytest.raises(CacheFieldMissing):
            fingerprint("POST", "http://x.test/", [body_field("id")], body_map={"name": "tom"}, body_kind=BodyKind.FORM)

    def test_json_body_dotted_path(self):
        body = {"user": {"ids": [4, 5]}}
        key = fingerprint("POST", "http://x.test/", [body_field("user.ids.1")], body_map=body, body_kind=BodyKind.JSON)
        assert key == _expected({"method": "POST", "url": "http://x.test/", "1-user.ids.1": "5"})

    def test_json_literal_dotted_key_wins(self):
        body = {"a.b": "literal", "a": {"b": "nested"}}
        key = fingerprint("POST", "http://x.test/", [body_field("a.b")], body_map=body, body_kind=BodyKind.JSON)
        assert key == _expected({"method": "POST", "url": "http://x.test/", "1-a.b": "literal"})

    def test_json_non_string_values_rendered_compact(self):
        body = {"filters": {"a": 1, "b": [1, 2]}}
        key = fingerprint("POST", "http://x.test/", [body_field("filters")], body_map=body, body_kind=BodyKind.JSON)
        assert key == _expected({"method": "POST", "url": "http://x.test/", "1-filters": '{"a":1,"b":[1,2]}'})

    def test_raw_body_is_part_of_key(self):
        first = fingerprint("POST", "http://x.test/", raw_body=b"one", body_kind=BodyKind.RAW)
        second = fingerprint("POST", "http://x.test/", raw_body=b"two", body_kind=BodyKind.RAW)
        assert first != second
        assert first == _expected(
            {"method": "POST", "url": "http://x.test/", "raw": base64.b64encode(b"one").decode("ascii")}
        )

    def test_field_key_format(self):
        assert query_field("id").key == "0-id"
        assert body_field("id").key == "1-id"
