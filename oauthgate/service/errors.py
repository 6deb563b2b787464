from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - validation_error (400)
    - provider_unsupported (400)
    - unauthorized (401)
    - invalid_token (401)
    - token_expired (401)
    - not_found (404)
    - conflict (409)
    - exchange_failed (502)
    - profile_fetch_failed (502)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class ProviderUnsupportedError(ValidationError):
    """Login requested for a provider other than the configured one (400)."""
    error_code = "provider_unsupported"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(AuthenticationError):
    """Presented credentials or login state were rejected (401)."""
    pass


class InvalidTokenError(AuthenticationError):
    """Access token is malformed or fails verification (401)."""
    error_code = "invalid_token"


class InvalidSignatureError(InvalidTokenError):
    """Signature or signing algorithm does not match (401)."""
    pass


class NotYetValidError(InvalidTokenError):
    """Token presented before its not-before time (401)."""
    pass


class TokenExpiredError(AuthenticationError):
    """Access token or refresh token is past its expiry (401)."""
    error_code = "token_expired"


class NotFoundError(ServiceError):
    """Requested user or token not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class AlreadyExistsError(ConflictError):
    """Record with the same identity already exists (409)."""
    pass


class UpstreamError(ServiceError):
    """Identity provider call failed (502)."""
    status_code = 502
    error_code = "upstream_error"


class ExchangeFailedError(UpstreamError):
    """Authorization code exchange with the provider failed (502)."""
    error_code = "exchange_failed"


class ProfileFetchFailedError(UpstreamError):
    """Fetching the provider user profile failed (502)."""
    error_code = "profile_fetch_failed"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "ProviderUnsupportedError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "InvalidTokenError",
    "InvalidSignatureError",
    "NotYetValidError",
    "TokenExpiredError",
    "NotFoundError",
    "ConflictError",
    "AlreadyExistsError",
    "UpstreamError",
    "ExchangeFailedError",
    "ProfileFetchFailedError",
    "ServerError",
]
