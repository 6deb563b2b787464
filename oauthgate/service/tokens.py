"""Access-token signing and verification plus refresh-record issuance.

Access tokens are self-contained HS256 JWTs that are never stored; refresh
tokens are opaque random strings persisted as ``Credential`` records by the
caller. Verifying an access token needs no storage, while a refresh token can
always be revoked by deleting its record.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from oauthgate.logging import get_logger
from oauthgate.service.errors import (
    InvalidSignatureError,
    InvalidTokenError,
    NotYetValidError,
    TokenExpiredError,
)
from oauthgate.storage.models import Credential, User, utcnow

logger = get_logger(__name__)

ALGORITHM = "HS256"
REFRESH_TOKEN_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class AccessClaims:
    sub: str
    email: str
    iat: int
    nbf: int
    exp: int
    iss: str
    jti: str

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


@dataclass
class IssuedTokens:
    access_token: str
    access_expires_at: datetime
    credential: Credential


class TokenIssuer:
    """Mints and verifies credentials with a signing key fixed at construction."""

    def __init__(
        self,
        secret: str,
        *,
        access_ttl: timedelta,
        refresh_ttl: timedelta = REFRESH_TOKEN_TTL,
        issuer: str = "oauthgate",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise ValueError("token lifetimes must be positive")
        self._secret = secret.encode("utf-8")
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.issuer = issuer
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return self._clock()

    def issue(self, user: User) -> IssuedTokens:
        now = self._now()
        issued_at = int(now.timestamp())
        expires_at = issued_at + int(self.access_ttl.total_seconds())
        claims = {
            "sub": user.id,
            "email": user.email,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": expires_at,
            "iss": self.issuer,
            "jti": str(uuid.uuid4()),
        }
        credential = Credential.new(user.id, self.refresh_ttl, now=now)
        return IssuedTokens(
            access_token=self._encode_jwt(claims),
            access_expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
            credential=credential,
        )

    def validate(self, token: str) -> AccessClaims:
        """Verify signature, algorithm, issuer and time window; return the claims."""
        payload = self._decode_jwt(token)
        claims = self._parse_claims(payload)
        now_ts = self._now().timestamp()
        if now_ts < claims.nbf:
            raise NotYetValidError("token not yet valid")
        if now_ts > claims.exp:
            raise TokenExpiredError("access token expired")
        return claims

    def validate_refresh_record(self, credential: Credential) -> None:
        if credential.is_expired(self._now()):
            raise TokenExpiredError(
                "refresh token expired", detail={"credential_id": credential.id}
            )

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode("utf-8"), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = self._encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> dict[str, Any]:
        if not token or not isinstance(token, str):
            raise InvalidTokenError("missing token")
        parts = token.split(".")
        if len(parts) != 3:
            raise InvalidTokenError("malformed token")
        header_b64, payload_b64, sig_b64 = parts

        # Reject anything but HS256 to prevent algorithm confusion attacks
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError("malformed token header")
        if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidSignatureError("unexpected signing algorithm")

        # Compare encoded forms so any altered character fails, padding bits included
        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode("utf-8"), sig_b64.encode("utf-8")):
            raise InvalidSignatureError("signature mismatch")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError("malformed token payload")
        if not isinstance(payload, dict):
            raise InvalidTokenError("malformed token payload")
        return payload

    def _parse_claims(self, payload: dict[str, Any]) -> AccessClaims:
        try:
            claims = AccessClaims(
                sub=str(payload["sub"]),
                email=str(payload["email"]),
                iat=int(payload["iat"]),
                nbf=int(payload["nbf"]),
                exp=int(payload["exp"]),
                iss=str(payload["iss"]),
                jti=str(payload.get("jti") or ""),
            )
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError("token is missing required claims")
        if claims.iss != self.issuer:
            raise InvalidTokenError("unexpected token issuer")
        return claims


__all__ = [
    "ALGORITHM",
    "REFRESH_TOKEN_TTL",
    "AccessClaims",
    "IssuedTokens",
    "TokenIssuer",
]
