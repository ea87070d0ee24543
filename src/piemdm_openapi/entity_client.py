"""HTTP client for the entity-management OpenAPI."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, cast

import aiohttp
from yarl import URL

from piemdm_openapi.common.errors import (
    ApiError,
    ErrorKind,
    OpenApiError,
    TransportError,
    parse_error_payload,
)
from piemdm_openapi.common.hmac import RequestSigner
from piemdm_openapi.common.logging import get_logger
from piemdm_openapi.common.settings import Settings

logger = get_logger(__name__)

ENTITIES_PATH = "/openapi/v1/entities"


@dataclass(frozen=True)
class ApiResponse:
    """Successful (2xx) API response."""

    status: int
    data: Any
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def items(self) -> list[Any]:
        """Rows of a list response."""
        if isinstance(self.data, dict):
            rows = self.data.get("data", [])
            return rows if isinstance(rows, list) else []
        return self.data if isinstance(self.data, list) else []

    @property
    def total(self) -> int | None:
        if isinstance(self.data, dict) and "total" in self.data:
            return int(self.data["total"])
        return None


@dataclass(frozen=True)
class ApiResult:
    """Outcome of one API call: either a response or a typed error."""

    response: ApiResponse | None = None
    error: OpenApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> ApiResponse:
        """Return the response or raise the stored error."""
        if self.error is not None:
            raise self.error
        return cast(ApiResponse, self.response)


class EntityClient:
    """
    Signed HTTP client for the entity CRUD endpoints.

    Every request is signed with a fresh timestamp and nonce, and the exact
    body bytes and query string that were signed are the ones sent.
    Operations return ApiResult instead of raising, so callers branch on
    ``result.ok`` / ``result.kind``.
    """

    def __init__(
        self,
        signer: RequestSigner,
        base_url: str,
        timeout: float = 30.0,
    ):
        """
        Initialize the entity client.

        Args:
            signer: Request signer holding the credential
            base_url: API base URL (scheme and host, optional prefix)
            timeout: Total request timeout in seconds
        """
        self._signer = signer
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> EntityClient:
        """Build a client from settings.

        Raises:
            ConfigurationError: If the credential is incomplete
        """
        signer = RequestSigner(
            settings.credential(),
            header_names=settings.header_names,
            query_encoding=settings.query_encoding,
        )
        return cls(signer, settings.base_url, timeout=settings.http_timeout)

    @property
    def signer(self) -> RequestSigner:
        return self._signer

    async def __aenter__(self) -> EntityClient:
        """Enter async context."""
        self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        await self.close()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists."""
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _send(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None = None,
        payload: Any = None,
    ) -> ApiResponse:
        """
        Sign and send one request.

        Raises:
            EncodingError: If the payload cannot be serialized (nothing is sent)
            TransportError: On connection failure, timeout or unreadable body
            ApiError: On a non-2xx response
        """
        signed = self._signer.sign_request(method, path, query, payload)

        target = f"{self._base_url}{signed.path}"
        if signed.query_string:
            target = f"{target}?{signed.query_string}"
        url = URL(target, encoded=True)

        headers = {"Content-Type": "application/json", **signed.headers}

        logger.debug("Sending request", method=signed.method, url=str(url))

        session = self._ensure_session()
        try:
            response = await session.request(
                signed.method,
                url,
                data=signed.body or None,
                headers=headers,
            )
            async with response:
                status = response.status
                text = await response.text()
                response_headers = dict(response.headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Request failed: {e}") from e
        except UnicodeDecodeError as e:
            raise TransportError(f"Undecodable response body: {e}", status) from e

        try:
            data = json.loads(text) if text else None
        except json.JSONDecodeError as e:
            if 200 <= status < 300:
                raise TransportError(f"Invalid JSON response: {e}", status) from e
            data = {"message": text}

        if not 200 <= status < 300:
            code, message = parse_error_payload(data)
            logger.warning(
                "API request failed",
                method=signed.method,
                path=path,
                status=status,
                code=code,
            )
            raise ApiError(message or f"HTTP {status}", status, code)

        return ApiResponse(status=status, data=data, headers=response_headers)

    async def request(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None = None,
        payload: Any = None,
    ) -> ApiResult:
        """Send a signed request and wrap the outcome in an ApiResult."""
        try:
            response = await self._send(method, path, query, payload)
        except OpenApiError as e:
            return ApiResult(error=e)
        return ApiResult(response=response)

    # === Entity Operations ===

    async def list(
        self,
        table: str,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        """
        List entity records.

        Args:
            table: Entity table code
            params: Query parameters (page, pageSize, filters)
        """
        query = {key: str(value) for key, value in (params or {}).items()}
        return await self.request("GET", f"{ENTITIES_PATH}/{table}", query)

    async def get(self, table: str, record_id: int) -> ApiResult:
        """Get one entity record by id."""
        return await self.request("GET", f"{ENTITIES_PATH}/{table}/{record_id}")

    async def create(self, table: str, data: Mapping[str, Any]) -> ApiResult:
        """Create an entity record."""
        return await self.request("POST", f"{ENTITIES_PATH}/{table}", payload=data)

    async def update(self, table: str, record_id: int, data: Mapping[str, Any]) -> ApiResult:
        """Replace an entity record."""
        return await self.request("PUT", f"{ENTITIES_PATH}/{table}/{record_id}", payload=data)

    async def delete(self, table: str, record_id: int) -> ApiResult:
        """Delete an entity record."""
        return await self.request("DELETE", f"{ENTITIES_PATH}/{table}/{record_id}")
