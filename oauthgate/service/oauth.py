from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import urlencode, urlparse

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from oauthgate.logging import get_logger
from oauthgate.service.errors import ExchangeFailedError, ProfileFetchFailedError
from oauthgate.storage.models import User

# OAuth provider configuration
OAUTH_PROVIDERS = {
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": ["openid", "email", "profile"],
    },
}

logger = get_logger(__name__)


class ProviderToken(BaseModel):
    """Token endpoint response; only ``access_token`` is required."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None


class ProviderProfile(BaseModel):
    """Userinfo endpoint response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    subject_id: str = Field(..., alias="id", min_length=1)
    email: str = Field(..., min_length=3)
    verified_email: bool = False
    display_name: Optional[str] = Field(None, alias="name")
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None
    locale: Optional[str] = None


class GoogleOAuthAdapter:
    """Authorization-code flow against Google.

    Holds no state between calls. Each network round-trip is bounded by
    ``timeout`` and any failure surfaces as ``ExchangeFailedError`` or
    ``ProfileFetchFailedError`` without the provider's response body.
    """

    provider = "google"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        scopes: Optional[Iterable[str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = self._validate_redirect_uri(redirect_uri)
        self.scopes = list(scopes or OAUTH_PROVIDERS[self.provider]["scope"])
        self.timeout = timeout
        self._transport = transport
        self._config = OAUTH_PROVIDERS[self.provider]

    @staticmethod
    def _validate_redirect_uri(redirect_uri: str) -> str:
        parsed = urlparse(redirect_uri or "")
        if parsed.scheme not in {"https", "http"}:
            raise ValueError("OAuth redirect URI must be http(s)")
        if parsed.scheme == "http" and parsed.hostname not in {"localhost", "127.0.0.1"}:
            raise ValueError("Insecure redirect URI not allowed outside localhost")
        if not parsed.netloc:
            raise ValueError("OAuth redirect URI must include host")
        return redirect_uri

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=False, transport=self._transport
        )

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self._config['auth_url']}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> ProviderToken:
        token_data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    self._config["token_url"],
                    data=token_data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.error(
                "oauth_exchange_transport_error",
                provider=self.provider,
                error_type=type(exc).__name__,
            )
            raise ExchangeFailedError(
                "authorization code exchange failed", detail={"stage": "exchange"}
            ) from exc

        if not response.is_success:
            logger.error(
                "oauth_exchange_http_error",
                provider=self.provider,
                status_code=response.status_code,
            )
            raise ExchangeFailedError(
                "authorization code exchange failed",
                detail={"stage": "exchange", "upstream_status": response.status_code},
            )
        try:
            return ProviderToken.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            logger.error("oauth_token_parse_error", provider=self.provider)
            raise ExchangeFailedError(
                "authorization code exchange returned a malformed response",
                detail={"stage": "exchange"},
            ) from exc

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        try:
            async with self._client() as client:
                response = await client.get(
                    self._config["userinfo_url"],
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as exc:
            logger.error(
                "oauth_userinfo_transport_error",
                provider=self.provider,
                error_type=type(exc).__name__,
            )
            raise ProfileFetchFailedError(
                "profile fetch failed", detail={"stage": "profile_fetch"}
            ) from exc

        if not response.is_success:
            logger.error(
                "oauth_userinfo_http_error",
                provider=self.provider,
                status_code=response.status_code,
            )
            raise ProfileFetchFailedError(
                "profile fetch failed",
                detail={"stage": "profile_fetch", "upstream_status": response.status_code},
            )
        try:
            return ProviderProfile.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            logger.error("oauth_userinfo_parse_error", provider=self.provider)
            raise ProfileFetchFailedError(
                "profile fetch returned a malformed response",
                detail={"stage": "profile_fetch"},
            ) from exc

    def to_local_user(self, profile: ProviderProfile) -> User:
        return User.new(
            email=profile.email,
            provider=self.provider,
            provider_subject_id=profile.subject_id,
        )


__all__ = [
    "OAUTH_PROVIDERS",
    "ProviderToken",
    "ProviderProfile",
    "GoogleOAuthAdapter",
]
