"""Configuration management using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from piemdm_openapi.common.canonical import QueryEncoding
from piemdm_openapi.common.errors import ConfigurationError
from piemdm_openapi.common.hmac import Credential, HeaderNames


class Settings(BaseSettings):
    """Client and verifier settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PIEMDM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API connection
    base_url: str = Field(
        default="http://localhost:8787",
        description="Base URL of the entity-management API",
    )
    http_timeout: float = Field(
        default=30.0,
        description="Total HTTP request timeout in seconds",
    )

    # Credential
    app_id: str | None = Field(
        default=None,
        description="Application identifier sent as X-App-Id",
    )
    app_secret: SecretStr | None = Field(
        default=None,
        description="Shared application secret used as the HMAC key",
    )

    # Signing
    query_encoding: QueryEncoding = Field(
        default="escape",
        description="Query rendering policy: 'escape' (form encoding) or 'raw'",
    )
    app_id_header: str = Field(default="X-App-Id")
    timestamp_header: str = Field(default="X-Timestamp")
    nonce_header: str = Field(default="X-Nonce")
    signature_header: str = Field(default="X-Sign")

    # Verification (server side)
    timestamp_window_seconds: int = Field(
        default=300,
        description="Accepted clock skew between signer and verifier",
    )
    nonce_ttl_seconds: int = Field(
        default=600,
        description="How long a seen nonce is remembered",
    )
    nonce_cache_size: int = Field(
        default=100_000,
        description="Maximum number of remembered nonces",
    )
    auth_exempt_paths: list[str] = Field(
        default_factory=lambda: ["/health"],
        description="Paths that skip signature verification",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    @property
    def header_names(self) -> HeaderNames:
        """Header names used for the four signature headers."""
        return HeaderNames(
            app_id=self.app_id_header,
            timestamp=self.timestamp_header,
            nonce=self.nonce_header,
            signature=self.signature_header,
        )

    def credential(self) -> Credential:
        """Build the credential, failing fast when it is incomplete."""
        if not self.app_id or self.app_secret is None:
            raise ConfigurationError("PIEMDM_APP_ID and PIEMDM_APP_SECRET must be set")
        return Credential(app_id=self.app_id, app_secret=self.app_secret.get_secret_value())


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
