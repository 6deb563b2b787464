import asyncio
import inspect
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import parse_qs

# Set before any imports that might initialize settings or the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("OAUTH_GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("OAUTH_GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("CREDENTIAL_SWEEP_INTERVAL_SECONDS", "0")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from oauthgate.service.auth import AuthService  # noqa: E402
from oauthgate.service.oauth import GoogleOAuthAdapter  # noqa: E402
from oauthgate.service.runtime import reset_runtime_for_tests  # noqa: E402
from oauthgate.service.tokens import TokenIssuer  # noqa: E402
from oauthgate.storage.memory import MemoryCredentialStore, MemoryIdentityStore  # noqa: E402

TEST_SECRET = "unit-test-signing-secret-0123456789abcdef"
REDIRECT_URI = "http://localhost:8000/v1/auth/oauth/callback"


class FakeClock:
    """Manually advanced clock for token lifetime tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGoogle:
    """Stand-in for Google's token and userinfo endpoints behind httpx.MockTransport."""

    def __init__(self):
        self.profile = {
            "id": "g-1",
            "email": "a@example.com",
            "verified_email": True,
            "name": "Test User",
        }
        self.token_status = 200
        self.token_body: dict | None = None
        self.userinfo_status = 200
        self.codes: list[str] = []
        self.userinfo_calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com" and request.url.path == "/token":
            form = parse_qs(request.content.decode("utf-8"))
            self.codes.append(form.get("code", [""])[0])
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            body = self.token_body or {
                "access_token": "provider-access-token",
                "token_type": "Bearer",
                "expires_in": 3599,
            }
            return httpx.Response(200, json=body)
        if request.url.path == "/oauth2/v2/userinfo":
            self.userinfo_calls += 1
            if request.headers.get("Authorization") != "Bearer provider-access-token":
                return httpx.Response(401, json={"error": "invalid_token"})
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status, json={"error": "unavailable"})
            return httpx.Response(200, json=self.profile)
        return httpx.Response(404)

    def adapter(self) -> GoogleOAuthAdapter:
        return GoogleOAuthAdapter(
            "test-client-id",
            "test-client-secret",
            REDIRECT_URI,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_google():
    return FakeGoogle()


@pytest.fixture
def issuer(clock):
    return TokenIssuer(
        TEST_SECRET,
        access_ttl=timedelta(hours=1),
        refresh_ttl=timedelta(hours=24),
        clock=clock,
    )


@pytest.fixture
def identities():
    return MemoryIdentityStore()


@pytest.fixture
def credentials():
    return MemoryCredentialStore()


@pytest.fixture
def auth_service(identities, credentials, issuer, fake_google):
    return AuthService(identities, credentials, issuer, fake_google.adapter())


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
