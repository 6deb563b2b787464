"""Tests for the Google OAuth adapter against a mocked provider."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from oauthgate.service.errors import ExchangeFailedError, ProfileFetchFailedError
from oauthgate.service.oauth import GoogleOAuthAdapter

REDIRECT = "http://localhost:8000/v1/auth/oauth/callback"


def test_authorization_url_carries_client_state_and_scopes():
    adapter = GoogleOAuthAdapter("client-123", "secret", REDIRECT)

    url = adapter.build_authorization_url("state-xyz")
    parsed = urlparse(url)
    params = parse_qs(parsed.query)

    assert parsed.netloc == "accounts.google.com"
    assert params["client_id"] == ["client-123"]
    assert params["state"] == ["state-xyz"]
    assert params["redirect_uri"] == [REDIRECT]
    assert params["response_type"] == ["code"]
    assert params["scope"] == ["openid email profile"]


def test_custom_scopes_are_used():
    adapter = GoogleOAuthAdapter("client-123", "secret", REDIRECT, scopes=["openid", "email"])

    params = parse_qs(urlparse(adapter.build_authorization_url("s")).query)

    assert params["scope"] == ["openid email"]


@pytest.mark.parametrize(
    "uri",
    ["ftp://example.com/cb", "http://example.com/cb", "not a url"],
)
def test_insecure_or_invalid_redirect_uri_rejected(uri):
    with pytest.raises(ValueError):
        GoogleOAuthAdapter("client-123", "secret", uri)


async def test_exchange_code_posts_form_and_parses_token(fake_google):
    adapter = fake_google.adapter()

    token = await adapter.exchange_code("abc")

    assert token.access_token == "provider-access-token"
    assert fake_google.codes == ["abc"]


async def test_exchange_failure_status_raises(fake_google):
    fake_google.token_status = 400
    adapter = fake_google.adapter()

    with pytest.raises(ExchangeFailedError) as excinfo:
        await adapter.exchange_code("bad")

    assert excinfo.value.detail["stage"] == "exchange"
    assert excinfo.value.detail["upstream_status"] == 400
    # Provider body is never echoed back
    assert "invalid_grant" not in excinfo.value.message


async def test_exchange_without_access_token_raises(fake_google):
    fake_google.token_body = {"token_type": "Bearer"}
    adapter = fake_google.adapter()

    with pytest.raises(ExchangeFailedError):
        await adapter.exchange_code("abc")


async def test_exchange_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    adapter = GoogleOAuthAdapter("c", "s", REDIRECT, transport=httpx.MockTransport(handler))

    with pytest.raises(ExchangeFailedError):
        await adapter.exchange_code("abc")


async def test_exchange_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    adapter = GoogleOAuthAdapter("c", "s", REDIRECT, timeout=0.1, transport=httpx.MockTransport(handler))

    with pytest.raises(ExchangeFailedError):
        await adapter.exchange_code("abc")


async def test_fetch_profile_returns_profile(fake_google):
    adapter = fake_google.adapter()

    profile = await adapter.fetch_profile("provider-access-token")

    assert profile.subject_id == "g-1"
    assert profile.email == "a@example.com"
    assert profile.display_name == "Test User"


async def test_fetch_profile_failure_raises(fake_google):
    fake_google.userinfo_status = 503
    adapter = fake_google.adapter()

    with pytest.raises(ProfileFetchFailedError) as excinfo:
        await adapter.fetch_profile("provider-access-token")

    assert excinfo.value.detail["stage"] == "profile_fetch"


async def test_fetch_profile_missing_fields_raises(fake_google):
    fake_google.profile = {"name": "No Id"}
    adapter = fake_google.adapter()

    with pytest.raises(ProfileFetchFailedError):
        await adapter.fetch_profile("provider-access-token")


async def test_to_local_user_maps_profile(fake_google):
    adapter = fake_google.adapter()
    profile = await adapter.fetch_profile("provider-access-token")

    user = adapter.to_local_user(profile)

    assert user.provider == "google"
    assert user.provider_subject_id == "g-1"
    assert user.email == "a@example.com"
    assert user.id
