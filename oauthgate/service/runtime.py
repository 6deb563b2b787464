from __future__ import annotations

import threading
from datetime import timedelta

from oauthgate.config import get_settings, reset_settings_cache
from oauthgate.logging import get_logger
from oauthgate.service.auth import AuthService
from oauthgate.service.oauth import GoogleOAuthAdapter
from oauthgate.service.tokens import TokenIssuer
from oauthgate.service.users import UserService
from oauthgate.storage.memory import MemoryCredentialStore, MemoryIdentityStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            oauth_provider=self.settings.oauth_provider,
            test_mode=self.settings.test_mode,
        )
        self.identities = MemoryIdentityStore()
        self.credentials = MemoryCredentialStore()
        self.tokens = TokenIssuer(
            self.settings.jwt_secret,
            access_ttl=timedelta(seconds=self.settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=self.settings.refresh_token_ttl_seconds),
            issuer=self.settings.jwt_issuer,
        )
        self.oauth = GoogleOAuthAdapter(
            self.settings.oauth_google_client_id or "",
            self.settings.oauth_google_client_secret or "",
            self.settings.oauth_redirect_uri,
            scopes=self.settings.oauth_scopes,
            timeout=self.settings.oauth_timeout_seconds,
        )
        self.auth = AuthService(self.identities, self.credentials, self.tokens, self.oauth)
        self.users = UserService(self.identities, self.credentials)
        if not self.settings.oauth_google_client_id:
            logger.warning("oauth_client_not_configured", provider=self.oauth.provider)
        logger.info(
            "runtime_initialized",
            access_token_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_token_ttl_seconds=self.settings.refresh_token_ttl_seconds,
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime
    with _runtime_lock:
        reset_settings_cache()
        runtime = Runtime()
        return runtime
