"""Tests for canonical request construction."""

import hashlib

import pytest

from piemdm_openapi.common.canonical import (
    EMPTY_PAYLOAD_HASH,
    SigningRequest,
    canonicalize,
    encode_query,
    hash_body,
)

PATH = "/openapi/v1/entities/product"


class TestCanonicalLayout:
    """The six-line canonical layout."""

    def test_exact_layout(self):
        """Lines appear in fixed order with no trailing newline."""
        canonical = canonicalize(
            "GET",
            PATH,
            {"page": "1", "pageSize": "10"},
            None,
            1700000000,
            "abc123",
        )

        assert canonical == (
            "GET\n"
            "/openapi/v1/entities/product\n"
            "page=1&pageSize=10\n"
            f"{EMPTY_PAYLOAD_HASH}\n"
            "1700000000\n"
            "abc123"
        )
        assert not canonical.endswith("\n")

    def test_deterministic(self):
        """Identical inputs give identical output."""
        args = ("POST", PATH, {"a": "1"}, b'{"x":1}', 1700000000, "n1")
        assert canonicalize(*args) == canonicalize(*args)

    def test_method_and_path_verbatim(self):
        """No upper-casing or slash normalization is applied."""
        canonical = canonicalize("get", "/entities/product/", {}, None, 1, "n")
        lines = canonical.split("\n")

        assert lines[0] == "get"
        assert lines[1] == "/entities/product/"

    def test_empty_query_gives_empty_line(self):
        """Empty mapping and None both yield an empty third line."""
        assert canonicalize("GET", PATH, {}, None, 1, "n").split("\n")[2] == ""
        assert canonicalize("GET", PATH, None, None, 1, "n").split("\n")[2] == ""

    def test_query_order_independent(self):
        """Mapping iteration order does not affect the result."""
        first = canonicalize("GET", PATH, {"b": "2", "a": "1"}, None, 1, "n")
        second = canonicalize("GET", PATH, {"a": "1", "b": "2"}, None, 1, "n")

        assert first == second
        assert "\na=1&b=2\n" in first


class TestBodyHash:
    """Body hash line."""

    @pytest.mark.parametrize("body", [None, b"", ""])
    def test_empty_body_constant(self, body):
        """Absent or empty body hashes to the SHA-256 of the empty string."""
        canonical = canonicalize("GET", PATH, {}, body, 1, "n")
        assert canonical.split("\n")[3] == EMPTY_PAYLOAD_HASH

    def test_constant_is_sha256_of_empty(self):
        assert EMPTY_PAYLOAD_HASH == hashlib.sha256(b"").hexdigest()

    def test_body_hash_matches_sha256(self):
        body = b'{"name":"Widget","price":9.5}'
        assert hash_body(body) == "1c632e3540e9a2034c697bcec2a3b0335df1244e7252c4ef0d74e4545a3b04bb"

    def test_non_ascii_hashed_as_utf8(self):
        """Text bodies are hashed over their UTF-8 bytes."""
        expected = "d44e9b3d3b31d37b4f0cd94f7861383519f9ec0cf59b953596627a3e7706bfbc"
        assert hash_body("名称") == expected
        assert hash_body("名称".encode("utf-8")) == expected


class TestQueryEncoding:
    """Query rendering policies."""

    def test_plain_values_identical_under_both_policies(self):
        query = {"pageSize": "10", "page": "1"}
        assert encode_query(query, "escape") == "page=1&pageSize=10"
        assert encode_query(query, "raw") == "page=1&pageSize=10"

    def test_escape_policy_encodes_delimiters(self):
        """Reserved characters cannot forge extra parameters."""
        encoded = encode_query({"q": "a&b=c", "name": "名 x"}, "escape")
        assert encoded == "name=%E5%90%8D+x&q=a%26b%3Dc"

    def test_raw_policy_concatenates(self):
        assert encode_query({"q": "a&b=c"}, "raw") == "q=a&b=c"

    def test_keys_sorted_by_code_point(self):
        """Upper-case keys sort before lower-case ones."""
        assert encode_query({"b": "1", "B": "2", "a": "3"}) == "B=2&a=3&b=1"

    def test_non_string_values_rendered(self):
        assert encode_query({"page": 2}) == "page=2"  # type: ignore[dict-item]


class TestSigningRequest:
    """SigningRequest value object."""

    def test_query_is_read_only_copy(self):
        source = {"page": "1"}
        request = SigningRequest("GET", PATH, source)
        source["page"] = "2"

        assert request.query["page"] == "1"
        with pytest.raises(TypeError):
            request.query["page"] = "3"  # type: ignore[index]

    def test_canonical_matches_function(self):
        request = SigningRequest("GET", PATH, {"b": "2", "a": "1"})
        assert request.canonical(1700000000, "n") == canonicalize(
            "GET", PATH, {"a": "1", "b": "2"}, None, 1700000000, "n"
        )
