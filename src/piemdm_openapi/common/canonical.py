"""Canonical request construction.

The canonical request is the exact string fed to HMAC-SHA256. Its layout is
fixed, six lines joined by ``\\n`` with no trailing newline::

    METHOD
    PATH
    SORTED_QUERY
    BODY_HASH
    TIMESTAMP
    NONCE

Sorting the query keys makes the string independent of mapping order. The
body is represented by its SHA-256 digest so the canonical form stays small
and its representation is fixed.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal
from urllib.parse import quote_plus

# SHA256("")
EMPTY_PAYLOAD_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

QueryEncoding = Literal["escape", "raw"]


def encode_query(query: Mapping[str, str] | None, encoding: QueryEncoding = "escape") -> str:
    """
    Render a query mapping as ``k1=v1&k2=v2`` with keys in ascending order.

    The same string is used in the canonical request and on the wire, so the
    server reconstructs exactly what was signed.

    Args:
        query: Query parameters (single value per key)
        encoding: ``"escape"`` form-encodes keys and values the way the
            server's query escaping does; ``"raw"`` concatenates them as-is

    Returns:
        Sorted query string, empty for an empty mapping
    """
    if not query:
        return ""

    parts: list[str] = []
    for key in sorted(query):
        value = str(query[key])
        if encoding == "escape":
            parts.append(f"{quote_plus(key)}={quote_plus(value)}")
        else:
            parts.append(f"{key}={value}")
    return "&".join(parts)


def hash_body(body: bytes | str | None) -> str:
    """Lower-case hex SHA-256 of the UTF-8 body; fixed constant when empty."""
    if not body:
        return EMPTY_PAYLOAD_HASH
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def canonicalize(
    method: str,
    path: str,
    query: Mapping[str, str] | None,
    body: bytes | str | None,
    timestamp: int | str,
    nonce: str,
    encoding: QueryEncoding = "escape",
) -> str:
    """
    Build the canonical request string.

    Method and path are used verbatim: callers upper-case the method and
    pass the path without query string or normalization.
    """
    return "\n".join(
        [
            method,
            path,
            encode_query(query, encoding),
            hash_body(body),
            str(timestamp),
            nonce,
        ]
    )


@dataclass(frozen=True)
class SigningRequest:
    """Semantic content of one outbound request."""

    method: str
    path: str
    query: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "query", MappingProxyType(dict(self.query or {})))

    def canonical(
        self,
        timestamp: int | str,
        nonce: str,
        encoding: QueryEncoding = "escape",
    ) -> str:
        """Canonical request for this request at the given timestamp/nonce."""
        return canonicalize(
            self.method,
            self.path,
            self.query,
            self.body,
            timestamp,
            nonce,
            encoding,
        )
