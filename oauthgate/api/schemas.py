from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "provider_unsupported",
    "unauthorized",
    "invalid_token",
    "token_expired",
    "not_found",
    "conflict",
    "upstream_error",
    "exchange_failed",
    "profile_fetch_failed",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(f"invalid error code '{value}'")
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class CallbackRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=512)
    state: Optional[str] = Field(default=None, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=2048)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=2048)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    refresh_expires_at: datetime


class UserResponse(BaseModel):
    id: str
    email: str
    provider: str
    created_at: datetime
    updated_at: datetime


class SessionResponse(BaseModel):
    """A refresh-token record as shown to its owner; never carries the secret."""

    id: str
    created_at: datetime
    expires_at: datetime


class SessionListResponse(BaseModel):
    items: List[SessionResponse]
