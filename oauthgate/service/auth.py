from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from oauthgate.logging import get_logger
from oauthgate.service.errors import (
    AlreadyExistsError,
    NotFoundError,
    ProviderUnsupportedError,
)
from oauthgate.service.oauth import ProviderProfile, ProviderToken
from oauthgate.service.tokens import IssuedTokens, TokenIssuer
from oauthgate.storage.errors import ConstraintViolation, RecordNotFound
from oauthgate.storage.models import Credential, User

logger = get_logger(__name__)


class IdentityStore(Protocol):
    def create(self, user: User) -> User: ...

    def find_by_id(self, user_id: str) -> User: ...

    def find_by_email(self, email: str) -> User: ...

    def find_by_provider_identity(self, provider: str, subject_id: str) -> User: ...

    def update(self, user: User) -> User: ...

    def delete(self, user_id: str) -> None: ...


class CredentialStore(Protocol):
    def create(self, credential: Credential) -> Credential: ...

    def find_by_id(self, credential_id: str) -> Credential: ...

    def find_by_refresh_token(self, refresh_token: str) -> Credential: ...

    def find_by_user_id(self, user_id: str) -> List[Credential]: ...

    def delete(self, credential_id: str) -> None: ...

    def delete_by_user_id(self, user_id: str) -> int: ...


class OAuthProvider(Protocol):
    provider: str

    def build_authorization_url(self, state: str) -> str: ...

    async def exchange_code(self, code: str) -> ProviderToken: ...

    async def fetch_profile(self, access_token: str) -> ProviderProfile: ...

    def to_local_user(self, profile: ProviderProfile) -> User: ...


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "bearer"

    @classmethod
    def from_issued(cls, issued: IssuedTokens) -> "TokenPair":
        return cls(
            access_token=issued.access_token,
            refresh_token=issued.credential.refresh_token,
            access_expires_at=issued.access_expires_at,
            refresh_expires_at=issued.credential.expires_at,
        )


class AuthService:
    """Coordinates the OAuth login flow and the refresh-token lifecycle.

    Owns no records: users live in the identity store, refresh tokens in the
    credential store, and all cross references go by identifier. A login
    attempt moves through code exchange, profile fetch, identity resolution,
    credential issuance and persistence; any failure aborts the attempt and
    propagates, nothing is retried.
    """

    def __init__(
        self,
        identities: IdentityStore,
        credentials: CredentialStore,
        tokens: TokenIssuer,
        oauth: OAuthProvider,
    ) -> None:
        self.identities = identities
        self.credentials = credentials
        self.tokens = tokens
        self.oauth = oauth
        self.logger = logger

    def initiate_login(self, state: str, provider: Optional[str] = None) -> str:
        requested = (provider or self.oauth.provider).lower()
        if requested != self.oauth.provider:
            raise ProviderUnsupportedError(
                f"Unsupported OAuth provider: {provider}",
                detail={"provider": provider},
            )
        return self.oauth.build_authorization_url(state)

    async def handle_callback(self, code: str) -> TokenPair:
        # Network calls happen before any store lock is taken
        provider_token = await self.oauth.exchange_code(code)
        profile = await self.oauth.fetch_profile(provider_token.access_token)

        user, created = self._resolve_identity(profile)
        if created:
            self.logger.info("user_created", user_id=user.id, provider=user.provider)

        issued = self.tokens.issue(user)
        self._persist_credential(issued.credential, stage="persistence")
        self.logger.info(
            "oauth_login_completed",
            user_id=user.id,
            credential_id=issued.credential.id,
            new_user=created,
        )
        return TokenPair.from_issued(issued)

    async def refresh(self, refresh_token: str) -> TokenPair:
        current = self._find_credential(refresh_token)
        self.tokens.validate_refresh_record(current)
        try:
            user = self.identities.find_by_id(current.user_id)
        except RecordNotFound as exc:
            # Orphaned credential: surface it, never repair silently
            self.logger.error(
                "orphaned_credential",
                credential_id=current.id,
                user_id=current.user_id,
            )
            raise NotFoundError(
                "user not found", detail={"stage": "user_lookup"}
            ) from exc

        issued = self.tokens.issue(user)
        # New record first: a failure between the two calls leaves two live
        # credentials, never zero.
        self._persist_credential(issued.credential, stage="rotation")
        try:
            self.credentials.delete(current.id)
        except RecordNotFound as exc:
            # A concurrent refresh or logout consumed the same token; retract ours
            self._discard_credential(issued.credential.id)
            raise NotFoundError(
                "refresh token not found", detail={"stage": "rotation"}
            ) from exc
        self.logger.info(
            "credential_rotated",
            user_id=user.id,
            old_credential_id=current.id,
            new_credential_id=issued.credential.id,
        )
        return TokenPair.from_issued(issued)

    async def logout(self, refresh_token: str) -> None:
        current = self._find_credential(refresh_token)
        try:
            self.credentials.delete(current.id)
        except RecordNotFound as exc:
            raise NotFoundError(
                "refresh token not found", detail={"stage": "credential_lookup"}
            ) from exc
        self.logger.info("logout", user_id=current.user_id, credential_id=current.id)

    async def logout_all(self, user_id: str) -> int:
        """Delete every refresh token the user owns ("log out everywhere")."""
        revoked = self.credentials.delete_by_user_id(user_id)
        self.logger.info("logout_all", user_id=user_id, revoked=revoked)
        return revoked

    def list_sessions(self, user_id: str) -> List[Credential]:
        return self.credentials.find_by_user_id(user_id)

    async def validate_access_token(self, token: str) -> User:
        claims = self.tokens.validate(token)
        try:
            # Re-check gives deleted accounts a revocation path within the token TTL
            return self.identities.find_by_id(claims.sub)
        except RecordNotFound as exc:
            raise NotFoundError(
                "user not found", detail={"stage": "user_lookup"}
            ) from exc

    def _resolve_identity(self, profile: ProviderProfile) -> Tuple[User, bool]:
        candidate = self.oauth.to_local_user(profile)
        try:
            if hasattr(self.identities, "get_or_create_by_provider"):
                return self.identities.get_or_create_by_provider(candidate)  # type: ignore[attr-defined]
            try:
                # Existing users are returned as stored; profile fields are not refreshed
                existing = self.identities.find_by_provider_identity(
                    candidate.provider, candidate.provider_subject_id
                )
                return existing, False
            except RecordNotFound:
                return self.identities.create(candidate), True
        except ConstraintViolation as exc:
            self.logger.warning(
                "identity_resolution_conflict",
                provider=candidate.provider,
                detail=exc.detail,
            )
            raise AlreadyExistsError(
                "user already exists", detail={"stage": "identity_resolution"}
            ) from exc

    def _find_credential(self, refresh_token: str) -> Credential:
        if not refresh_token:
            raise NotFoundError(
                "refresh token not found", detail={"stage": "credential_lookup"}
            )
        try:
            return self.credentials.find_by_refresh_token(refresh_token)
        except RecordNotFound as exc:
            raise NotFoundError(
                "refresh token not found", detail={"stage": "credential_lookup"}
            ) from exc

    def _persist_credential(self, credential: Credential, *, stage: str) -> None:
        try:
            self.credentials.create(credential)
        except ConstraintViolation as exc:
            raise AlreadyExistsError(
                "credential already exists", detail={"stage": stage}
            ) from exc

    def _discard_credential(self, credential_id: str) -> None:
        try:
            self.credentials.delete(credential_id)
        except RecordNotFound:
            self.logger.warning("credential_discard_missing", credential_id=credential_id)


__all__ = [
    "IdentityStore",
    "CredentialStore",
    "OAuthProvider",
    "TokenPair",
    "AuthService",
]
