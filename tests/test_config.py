import importlib

import pytest
from pydantic import ValidationError

from oauthgate.config import Settings, get_settings, reset_settings_cache


def test_defaults_from_env(monkeypatch):
    monkeypatch.delenv("ACCESS_TOKEN_TTL_SECONDS", raising=False)
    monkeypatch.delenv("REFRESH_TOKEN_TTL_SECONDS", raising=False)
    monkeypatch.delenv("OAUTH_SCOPES", raising=False)

    settings = Settings.from_env()

    assert settings.access_token_ttl_seconds == 3600
    assert settings.refresh_token_ttl_seconds == 86400
    assert settings.oauth_provider == "google"
    assert settings.oauth_scopes == ["openid", "email", "profile"]
    assert settings.jwt_issuer == "oauthgate"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "900")
    monkeypatch.setenv("OAUTH_SCOPES", "openid, email")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://app.example.com,https://admin.example.com")
    monkeypatch.setenv("OAUTH_PROVIDER", "Google")

    settings = Settings.from_env()

    assert settings.access_token_ttl_seconds == 900
    assert settings.oauth_scopes == ["openid", "email"]
    assert settings.cors_allow_origins == ["https://app.example.com", "https://admin.example.com"]
    assert settings.oauth_provider == "google"


def test_short_jwt_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="too-short")


def test_missing_jwt_secret_is_generated():
    first = Settings(jwt_secret=None)
    second = Settings()

    assert len(first.jwt_secret) >= 32
    assert first.jwt_secret != second.jwt_secret


@pytest.mark.parametrize(
    "field,value",
    [
        ("oauth_provider", "github"),
        ("oauth_redirect_uri", "http://evil.example.com/cb"),
        ("access_token_ttl_seconds", 0),
        ("oauth_timeout_seconds", -1),
    ],
)
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})


def test_settings_cache(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "120")
    reset_settings_cache()
    assert get_settings().access_token_ttl_seconds == 120
    reset_settings_cache()


def test_credential_sweep_is_off_by_default():
    assert Settings().credential_sweep_interval_seconds == 0


def test_app_reuses_cached_settings():
    reset_settings_cache()
    app_module = importlib.reload(importlib.import_module("oauthgate.app"))

    assert app_module._settings is get_settings()
