from __future__ import annotations

import os
import secrets
from typing import Any
from urllib.parse import urlparse

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from oauthgate.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_PROVIDERS = ("google",)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth engine and its HTTP surface."""

    # Token issuance
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("oauthgate", "JWT_ISSUER")
    access_token_ttl_seconds: int = env_field(
        3600,
        "ACCESS_TOKEN_TTL_SECONDS",
        gt=0,
        description="Lifetime of signed access tokens in seconds",
    )
    refresh_token_ttl_seconds: int = env_field(
        24 * 60 * 60,
        "REFRESH_TOKEN_TTL_SECONDS",
        gt=0,
        description="Lifetime of stored refresh tokens in seconds",
    )
    # OAuth settings
    oauth_provider: str = env_field("google", "OAUTH_PROVIDER")
    oauth_google_client_id: str | None = env_field(None, "OAUTH_GOOGLE_CLIENT_ID")
    oauth_google_client_secret: str | None = env_field(None, "OAUTH_GOOGLE_CLIENT_SECRET")
    oauth_redirect_uri: str = env_field(
        "http://localhost:8000/v1/auth/oauth/callback", "OAUTH_REDIRECT_URI"
    )
    oauth_scopes: list[str] = env_field(
        ["openid", "email", "profile"],
        "OAUTH_SCOPES",
        description="Comma separated scope list requested from the provider",
    )
    oauth_timeout_seconds: float = env_field(
        10.0,
        "OAUTH_TIMEOUT_SECONDS",
        gt=0,
        description="Upper bound for each round-trip to the provider",
    )
    oauth_state_cookie_ttl_seconds: int = env_field(600, "OAUTH_STATE_COOKIE_TTL_SECONDS")
    credential_sweep_interval_seconds: int = env_field(
        0,
        "CREDENTIAL_SWEEP_INTERVAL_SECONDS",
        ge=0,
        description="How often expired refresh tokens are purged; 0 (default) keeps expiry lazy",
    )
    # HTTP surface
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Relaxes cookie security flags for local and CI runs.",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("oauth_scopes", "cors_allow_origins", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("oauth_provider")
    @classmethod
    def _validate_provider(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported OAuth provider: {value}")
        return normalized

    @field_validator("oauth_redirect_uri")
    @classmethod
    def _validate_redirect_uri(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"https", "http"}:
            raise ValueError("OAuth redirect URI must be http(s)")
        if parsed.scheme == "http" and parsed.hostname not in {"localhost", "127.0.0.1"}:
            raise ValueError("Insecure redirect URI not allowed outside localhost")
        if not parsed.netloc:
            raise ValueError("OAuth redirect URI must include host")
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            if len(value) < 32:
                raise ValueError("JWT_SECRET must be at least 32 characters")
            return value
        # Tokens signed with a generated secret do not survive a restart
        logger.warning(
            "jwt_secret_generated",
            message="JWT_SECRET unset; using an ephemeral signing key",
        )
        return secrets.token_urlsafe(64)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
