"""Signature verification and middleware for signed requests."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from piemdm_openapi.common.canonical import QueryEncoding, canonicalize
from piemdm_openapi.common.errors import AuthError, ErrorCode, error_response
from piemdm_openapi.common.hmac import DEFAULT_HEADERS, HeaderNames, ensure_primitives, verify
from piemdm_openapi.common.logging import get_logger
from piemdm_openapi.common.nonce import NonceCache, NonceCacheFull
from piemdm_openapi.common.settings import Settings

logger = get_logger(__name__)

SecretLookup = Callable[[str], str | None]
# Returns the comma-separated allowed IPs for an app id; empty or None allows all.
WhitelistLookup = Callable[[str], str | None]


def ip_allowed(whitelist: str | None, client_ip: str | None) -> bool:
    """Check a client IP against a comma-separated whitelist."""
    if not whitelist or not whitelist.strip():
        return True
    allowed = {ip.strip() for ip in whitelist.split(",") if ip.strip()}
    return client_ip in allowed


class SignatureVerifier:
    """Server-side counterpart of RequestSigner."""

    def __init__(
        self,
        secret_lookup: SecretLookup,
        timestamp_window: int = 300,
        nonce_cache: NonceCache | None = None,
        header_names: HeaderNames = DEFAULT_HEADERS,
        query_encoding: QueryEncoding = "escape",
        clock: Callable[[], float] = time.time,
        ip_whitelist_lookup: WhitelistLookup | None = None,
    ):
        """
        Initialize the verifier.

        Args:
            secret_lookup: Returns the secret for an app id, or None if unknown
            timestamp_window: Allowed skew in seconds, in both directions
            nonce_cache: Replay cache; a private one is created if omitted
            header_names: Names of the four signature headers
            query_encoding: Must match the policy the signers use
            clock: Source of Unix time in seconds
            ip_whitelist_lookup: Returns the allowed IPs for an app id
        """
        ensure_primitives()
        self._secret_lookup = secret_lookup
        self._timestamp_window = timestamp_window
        self._nonce_cache = nonce_cache if nonce_cache is not None else NonceCache()
        self._header_names = header_names
        self._query_encoding = query_encoding
        self._clock = clock
        self._ip_whitelist_lookup = ip_whitelist_lookup

    @property
    def nonce_cache(self) -> NonceCache:
        return self._nonce_cache

    def verify(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None,
        body: bytes | None,
        headers: Mapping[str, str],
        client_ip: str | None = None,
    ) -> str:
        """
        Verify a signed request and return the authenticated app id.

        The client IP is checked against the app whitelist after the
        signature verifies. The nonce is recorded only after both pass.

        Raises:
            AuthError: On any verification failure
        """
        names = self._header_names
        app_id = headers.get(names.app_id)
        timestamp = headers.get(names.timestamp)
        nonce = headers.get(names.nonce)
        signature = headers.get(names.signature)

        if not app_id or not timestamp or not nonce or not signature:
            raise AuthError(ErrorCode.AUTH_FAILED, "Missing required headers")

        secret = self._secret_lookup(app_id)
        if not secret:
            logger.warning("Unknown application", app_id=app_id)
            raise AuthError(ErrorCode.AUTH_SIGNATURE_INVALID, "Application not found")

        try:
            ts_value = int(timestamp)
        except ValueError:
            raise AuthError(ErrorCode.AUTH_TOKEN_EXPIRED, "Invalid timestamp format") from None

        now = int(self._clock())
        if abs(now - ts_value) > self._timestamp_window:
            raise AuthError(ErrorCode.AUTH_TOKEN_EXPIRED, "Timestamp expired")

        canonical = canonicalize(
            method.upper(),
            path,
            query,
            body,
            timestamp,
            nonce,
            self._query_encoding,
        )
        if not verify(canonical, secret, signature):
            logger.warning("Signature mismatch", app_id=app_id, method=method, path=path)
            logger.debug("Expected canonical request", canonical_request=canonical)
            raise AuthError(ErrorCode.AUTH_SIGNATURE_INVALID, "Signature mismatch")

        if self._ip_whitelist_lookup is not None:
            whitelist = self._ip_whitelist_lookup(app_id)
            if not ip_allowed(whitelist, client_ip):
                logger.warning(
                    "IP not in whitelist",
                    app_id=app_id,
                    client_ip=client_ip,
                    allowed_ips=whitelist,
                )
                raise AuthError(ErrorCode.AUTH_IP_NOT_ALLOWED, "IP not in whitelist", 403)

        try:
            fresh = self._nonce_cache.check_and_record(nonce)
        except NonceCacheFull:
            logger.error("Nonce cache full", app_id=app_id)
            raise AuthError(
                ErrorCode.RATE_LIMIT_EXCEEDED, "Too many requests in the replay window", 429
            ) from None
        if not fresh:
            logger.warning("Nonce replayed", app_id=app_id, nonce=nonce)
            raise AuthError(ErrorCode.AUTH_NONCE_USED, "Nonce already used")

        return app_id


def create_verifier(
    settings: Settings,
    secret_lookup: SecretLookup,
    ip_whitelist_lookup: WhitelistLookup | None = None,
) -> SignatureVerifier:
    """Build a verifier from settings."""
    return SignatureVerifier(
        secret_lookup,
        timestamp_window=settings.timestamp_window_seconds,
        nonce_cache=NonceCache(
            ttl_seconds=settings.nonce_ttl_seconds,
            max_entries=settings.nonce_cache_size,
        ),
        header_names=settings.header_names,
        query_encoding=settings.query_encoding,
        ip_whitelist_lookup=ip_whitelist_lookup,
    )


class CanonicalRequestMiddleware(BaseHTTPMiddleware):
    """Reject requests whose canonical-request signature does not verify."""

    def __init__(
        self,
        app: ASGIApp,
        verifier: SignatureVerifier,
        exempt_paths: tuple[str, ...] | list[str] = (),
    ) -> None:
        super().__init__(app)
        self._verifier = verifier
        self._exempt_paths = set(exempt_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        body = await request.body()
        try:
            app_id = self._verifier.verify(
                request.method,
                request.url.path,
                dict(request.query_params),
                body,
                request.headers,
                client_ip=request.client.host if request.client else None,
            )
        except AuthError as exc:
            return error_response(exc.code, exc.message, exc.status_code)

        request.state.app_id = app_id
        logger.debug("Canonical request verified", app_id=app_id)
        return await call_next(request)


def create_canonical_request_middleware(
    settings: Settings,
    secret_lookup: SecretLookup,
    ip_whitelist_lookup: WhitelistLookup | None = None,
) -> type[CanonicalRequestMiddleware]:
    """
    Factory function to create the verification middleware from settings.

    Args:
        settings: Verification settings (window, nonce TTL, exempt paths)
        secret_lookup: Returns the secret for an app id, or None if unknown
        ip_whitelist_lookup: Returns the allowed IPs for an app id

    Returns:
        Configured middleware class
    """
    verifier = create_verifier(settings, secret_lookup, ip_whitelist_lookup)
    exempt_paths = list(settings.auth_exempt_paths)

    class ConfiguredCanonicalRequestMiddleware(CanonicalRequestMiddleware):
        def __init__(self, app: ASGIApp) -> None:
            super().__init__(app, verifier=verifier, exempt_paths=exempt_paths)

    return ConfiguredCanonicalRequestMiddleware
