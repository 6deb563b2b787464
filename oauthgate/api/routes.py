from __future__ import annotations

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse

from oauthgate.api.schemas import (
    CallbackRequest,
    Envelope,
    LogoutRequest,
    RefreshRequest,
    SessionListResponse,
    SessionResponse,
    TokenResponse,
    UserResponse,
)
from oauthgate.logging import get_logger
from oauthgate.service.auth import TokenPair
from oauthgate.service.errors import InvalidCredentialsError
from oauthgate.service.runtime import get_runtime
from oauthgate.storage.common import secrets_match
from oauthgate.storage.models import User

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

OAUTH_STATE_COOKIE = "oauth_state"
_OAUTH_COOKIE_PATH = "/v1/auth/oauth"


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_at=tokens.access_expires_at,
        refresh_expires_at=tokens.refresh_expires_at,
    )


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        provider=user.provider,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


async def get_user(authorization: Optional[str] = Header(None)) -> User:
    if not authorization:
        raise _http_error("unauthorized", "missing bearer token", status_code=401)
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _http_error("unauthorized", "invalid authorization header", status_code=401)
    runtime = get_runtime()
    return await runtime.auth.validate_access_token(token.strip())


@router.get("/auth/oauth/login", tags=["auth"])
async def oauth_login(
    provider: str = Query("google", max_length=32, description="OAuth provider"),
):
    """Redirect the browser to the provider's consent page.

    A fresh state value is stored in a short-lived cookie and checked again
    on the callback.
    """
    runtime = get_runtime()
    state = secrets.token_urlsafe(32)
    url = runtime.auth.initiate_login(state, provider)
    response = RedirectResponse(url, status_code=307)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=runtime.settings.oauth_state_cookie_ttl_seconds,
        path=_OAUTH_COOKIE_PATH,
        httponly=True,
        secure=not runtime.settings.test_mode,
        samesite="lax",
    )
    logger.info("oauth_login_redirect", provider=provider)
    return response


async def _complete_callback(
    code: str, state: Optional[str], request: Request, response: Response
) -> Envelope:
    runtime = get_runtime()
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if expected_state is not None:
        if not state or not secrets_match(expected_state, state):
            logger.warning("oauth_state_mismatch")
            raise InvalidCredentialsError("oauth state mismatch", detail={"stage": "state"})
        response.delete_cookie(OAUTH_STATE_COOKIE, path=_OAUTH_COOKIE_PATH)
    tokens = await runtime.auth.handle_callback(code)
    return Envelope(status="ok", data=_token_response(tokens))


@router.get("/auth/oauth/callback", response_model=Envelope, tags=["auth"])
async def oauth_callback(
    request: Request,
    response: Response,
    code: str = Query(..., min_length=1, max_length=512, description="Authorization code"),
    state: Optional[str] = Query(None, max_length=128, description="State echoed by the provider"),
):
    """Exchange the authorization code and issue a token pair."""
    return await _complete_callback(code, state, request, response)


@router.post("/auth/oauth/callback", response_model=Envelope, tags=["auth"])
async def oauth_callback_post(body: CallbackRequest, request: Request, response: Response):
    return await _complete_callback(body.code, body.state, request, response)


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: RefreshRequest):
    runtime = get_runtime()
    tokens = await runtime.auth.refresh(body.refresh_token)
    return Envelope(status="ok", data=_token_response(tokens))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(body: LogoutRequest):
    runtime = get_runtime()
    await runtime.auth.logout(body.refresh_token)
    return Envelope(status="ok", data={"message": "logged out"})


@router.post("/auth/logout_all", response_model=Envelope, tags=["auth"])
async def logout_all(principal: User = Depends(get_user)):
    runtime = get_runtime()
    revoked = await runtime.auth.logout_all(principal.id)
    return Envelope(status="ok", data={"revoked": revoked})


@router.get("/auth/sessions", response_model=Envelope, tags=["auth"])
async def list_sessions(principal: User = Depends(get_user)):
    runtime = get_runtime()
    sessions = runtime.auth.list_sessions(principal.id)
    return Envelope(
        status="ok",
        data=SessionListResponse(
            items=[
                SessionResponse(id=s.id, created_at=s.created_at, expires_at=s.expires_at)
                for s in sessions
            ]
        ),
    )


@router.get("/me", response_model=Envelope, tags=["auth"])
async def get_current_user(principal: User = Depends(get_user)):
    """Get the current user's profile."""
    return Envelope(status="ok", data=_user_response(principal))


@router.delete("/me", response_model=Envelope, tags=["auth"])
async def delete_current_user(principal: User = Depends(get_user)):
    """Remove the account and revoke every refresh token it owns."""
    runtime = get_runtime()
    revoked = runtime.users.delete_user(principal.id)
    return Envelope(status="ok", data={"deleted": principal.id, "revoked": revoked})
