"""Pytest configuration and fixtures."""

import pytest

from piemdm_openapi.common.hmac import Credential, RequestSigner
from piemdm_openapi.common.settings import Settings

FIXED_TIMESTAMP = 1700000000
FIXED_NONCE = "0123456789abcdef0123456789abcdef"


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        base_url="http://api.test",
        app_id="test_app_001",
        app_secret="test_secret_123456",
        http_timeout=5.0,
    )


@pytest.fixture
def credential() -> Credential:
    """Credential used by the reference vectors."""
    return Credential(app_id="test_app_001", app_secret="test_secret_123456")


@pytest.fixture
def fixed_signer(credential) -> RequestSigner:
    """Signer with a frozen clock and nonce."""
    return RequestSigner(
        credential,
        clock=lambda: float(FIXED_TIMESTAMP),
        nonce_factory=lambda: FIXED_NONCE,
    )


@pytest.fixture
def signer(credential) -> RequestSigner:
    """Signer with the real clock and nonce source."""
    return RequestSigner(credential)
