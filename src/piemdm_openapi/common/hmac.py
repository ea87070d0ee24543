"""HMAC-SHA256 request signing."""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from piemdm_openapi.common.canonical import QueryEncoding, canonicalize, encode_query
from piemdm_openapi.common.errors import ConfigurationError, EncodingError
from piemdm_openapi.common.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Credential:
    """Application identity and shared secret."""

    app_id: str
    app_secret: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.app_id:
            raise ConfigurationError("app_id must not be empty")
        if not self.app_secret:
            raise ConfigurationError("app_secret must not be empty")


@dataclass(frozen=True)
class HeaderNames:
    """Names of the four signature headers."""

    app_id: str = "X-App-Id"
    timestamp: str = "X-Timestamp"
    nonce: str = "X-Nonce"
    signature: str = "X-Sign"


DEFAULT_HEADERS = HeaderNames()


@dataclass(frozen=True)
class SignatureContext:
    """Per-call signing material."""

    app_id: str
    timestamp: int
    nonce: str
    signature: str

    def headers(self, names: HeaderNames = DEFAULT_HEADERS) -> dict[str, str]:
        """Render the four signature headers."""
        return {
            names.app_id: self.app_id,
            names.timestamp: str(self.timestamp),
            names.nonce: self.nonce,
            names.signature: self.signature,
        }


@dataclass(frozen=True)
class SignedRequest:
    """Everything the transport needs to send exactly what was signed."""

    method: str
    path: str
    query_string: str
    body: bytes
    context: SignatureContext
    headers: dict[str, str]
    canonical_request: str = field(repr=False, default="")


def ensure_primitives() -> None:
    """Fail fast when SHA-256 is missing from this interpreter's hashlib."""
    if "sha256" not in hashlib.algorithms_available:
        raise ConfigurationError("SHA-256 is not available in hashlib")


def sign(canonical_request: str, secret: str) -> str:
    """Create a lower-case hex HMAC-SHA256 signature of the canonical request."""
    return hmac.new(
        secret.encode("utf-8"),
        canonical_request.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify(canonical_request: str, secret: str, signature: str) -> bool:
    """Verify HMAC signature in constant time."""
    expected = sign(canonical_request, secret)
    return hmac.compare_digest(expected, signature)


def new_nonce() -> str:
    """Random 32-character lower-case hex token (128 bits)."""
    return secrets.token_hex(16)


def encode_body(payload: Any) -> bytes:
    """
    Serialize a request payload to deterministic JSON bytes.

    Keys are sorted and separators compact, so equal payloads always encode
    to the same bytes. ``None`` and an empty mapping encode to ``b""``.
    Strings are JSON values like any other; pass ``bytes`` to send raw text.

    Raises:
        EncodingError: If the payload is not JSON-serializable
    """
    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, Mapping) and not payload:
        return b""

    try:
        text = json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Payload is not JSON-serializable: {e}") from e
    return text.encode("utf-8")


class RequestSigner:
    """
    Signs outbound requests for one credential.

    Holds only immutable configuration; every call draws its own timestamp
    and nonce, so a single signer can be shared across tasks.
    """

    def __init__(
        self,
        credential: Credential,
        header_names: HeaderNames = DEFAULT_HEADERS,
        query_encoding: QueryEncoding = "escape",
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = new_nonce,
    ):
        """
        Initialize the signer.

        Args:
            credential: Application id and secret
            header_names: Names for the emitted headers
            query_encoding: Query rendering policy shared with the wire format
            clock: Source of Unix time in seconds
            nonce_factory: Source of per-request nonces

        Raises:
            ConfigurationError: If SHA-256 is unavailable
        """
        ensure_primitives()
        self._credential = credential
        self._header_names = header_names
        self._query_encoding = query_encoding
        self._clock = clock
        self._nonce_factory = nonce_factory

    @property
    def app_id(self) -> str:
        return self._credential.app_id

    @property
    def header_names(self) -> HeaderNames:
        return self._header_names

    @property
    def query_encoding(self) -> QueryEncoding:
        return self._query_encoding

    def sign_request(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None = None,
        payload: Any = None,
    ) -> SignedRequest:
        """
        Sign a single outbound call.

        Args:
            method: HTTP method (upper-cased here)
            path: Absolute request path without query string
            query: Query parameters
            payload: JSON-serializable body, raw bytes, or None

        Returns:
            SignedRequest with encoded body, query string and headers

        Raises:
            EncodingError: If the payload cannot be serialized
        """
        body = encode_body(payload)
        method = method.upper()
        timestamp = int(self._clock())
        nonce = self._nonce_factory()

        canonical = canonicalize(
            method,
            path,
            query,
            body,
            timestamp,
            nonce,
            self._query_encoding,
        )
        context = SignatureContext(
            app_id=self._credential.app_id,
            timestamp=timestamp,
            nonce=nonce,
            signature=sign(canonical, self._credential.app_secret),
        )

        logger.debug("Signed request", method=method, path=path, nonce=nonce)

        return SignedRequest(
            method=method,
            path=path,
            query_string=encode_query(query, self._query_encoding),
            body=body,
            context=context,
            headers=context.headers(self._header_names),
            canonical_request=canonical,
        )
