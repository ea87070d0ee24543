"""Common utilities for PieMDM OpenAPI."""

from piemdm_openapi.common.canonical import EMPTY_PAYLOAD_HASH, SigningRequest, canonicalize
from piemdm_openapi.common.hmac import Credential, RequestSigner, SignatureContext, sign
from piemdm_openapi.common.settings import Settings, get_settings

__all__ = [
    "EMPTY_PAYLOAD_HASH",
    "Credential",
    "RequestSigner",
    "Settings",
    "SignatureContext",
    "SigningRequest",
    "canonicalize",
    "get_settings",
    "sign",
]
