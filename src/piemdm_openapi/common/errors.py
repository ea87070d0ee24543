"""Shared error types, codes and response helpers."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from starlette.responses import JSONResponse


class ErrorCode:
    """
    Error codes of the OpenAPI server.

    The verifier raises the AUTH_* codes and RATE_LIMIT_EXCEEDED. The rest
    are the server vocabulary that parse_error_payload reads back into
    ApiError.code.
    """

    AUTH_FAILED = "AUTH_FAILED"
    AUTH_SIGNATURE_INVALID = "AUTH_SIGNATURE_INVALID"
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_NONCE_USED = "AUTH_NONCE_USED"
    AUTH_IP_NOT_ALLOWED = "AUTH_IP_NOT_ALLOWED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    PARAM_REQUIRED_MISSING = "PARAM_REQUIRED_MISSING"
    PARAM_VALUE_INVALID = "PARAM_VALUE_INVALID"
    DATA_NOT_FOUND = "DATA_NOT_FOUND"
    SYSTEM_INTERNAL_ERROR = "SYSTEM_INTERNAL_ERROR"


class ErrorKind(str, Enum):
    """Failure categories a caller can branch on."""

    CONFIGURATION = "configuration"
    ENCODING = "encoding"
    TRANSPORT = "transport"
    API = "api"


class OpenApiError(Exception):
    """Base class for client-side failures."""

    kind: ErrorKind = ErrorKind.API


class ConfigurationError(OpenApiError):
    """Missing credential or unavailable cryptographic primitive. Not retryable."""

    kind = ErrorKind.CONFIGURATION


class EncodingError(OpenApiError):
    """Request payload cannot be serialized deterministically."""

    kind = ErrorKind.ENCODING


class TransportError(OpenApiError):
    """HTTP exchange failed or returned an unreadable body."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ApiError(OpenApiError):
    """The API answered with a non-2xx status."""

    kind = ErrorKind.API

    def __init__(self, message: str, status_code: int, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class AuthError(Exception):
    """Request authentication failure raised by the verifier."""

    def __init__(self, code: str, message: str, status_code: int = 401) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


_CODE_PREFIX = re.compile(r"^\[?([A-Z]+_[A-Z_]+)\]?:?\s*(.*)$", re.DOTALL)


def parse_error_payload(payload: Any) -> tuple[str | None, str]:
    """Extract (code, message) from either error body shape the API returns.

    The entity API answers ``{"message": "CODE: text"}``; the verifier
    middleware answers ``{"error": {"code": ..., "message": ...}}``.
    """
    if not isinstance(payload, dict):
        return None, str(payload)

    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("code"), str(error.get("message", ""))

    message = str(payload.get("message", ""))
    match = _CODE_PREFIX.match(message)
    if match:
        return match.group(1), match.group(2) or message
    return None, message


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(payload, status_code=status_code)
