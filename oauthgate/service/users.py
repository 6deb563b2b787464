from __future__ import annotations

from dataclasses import replace

from oauthgate.logging import get_logger
from oauthgate.service.auth import CredentialStore, IdentityStore
from oauthgate.service.errors import AlreadyExistsError, NotFoundError, ValidationError
from oauthgate.storage.errors import ConstraintViolation, RecordNotFound
from oauthgate.storage.models import User, utcnow

logger = get_logger(__name__)


class UserService:
    """Account management on top of the identity store."""

    def __init__(self, identities: IdentityStore, credentials: CredentialStore) -> None:
        self.identities = identities
        self.credentials = credentials
        self.logger = logger

    def create_user(self, email: str, provider: str, provider_subject_id: str) -> User:
        if not email or not provider or not provider_subject_id:
            raise ValidationError("email, provider and provider_subject_id are required")
        try:
            self.identities.find_by_email(email)
        except RecordNotFound:
            pass
        else:
            raise AlreadyExistsError("user already exists", detail={"field": "email"})
        try:
            user = self.identities.create(User.new(email, provider, provider_subject_id))
        except ConstraintViolation as exc:
            raise AlreadyExistsError("user already exists", detail=exc.detail) from exc
        self.logger.info("user_created", user_id=user.id, provider=provider)
        return user

    def get_user(self, user_id: str) -> User:
        try:
            return self.identities.find_by_id(user_id)
        except RecordNotFound as exc:
            raise NotFoundError("user not found", detail={"user_id": user_id}) from exc

    def get_user_by_email(self, email: str) -> User:
        try:
            return self.identities.find_by_email(email)
        except RecordNotFound as exc:
            raise NotFoundError("user not found") from exc

    def get_user_by_provider(self, provider: str, subject_id: str) -> User:
        try:
            return self.identities.find_by_provider_identity(provider, subject_id)
        except RecordNotFound as exc:
            raise NotFoundError("user not found", detail={"provider": provider}) from exc

    def update_user(self, user: User) -> User:
        updated = replace(user, updated_at=utcnow())
        try:
            return self.identities.update(updated)
        except RecordNotFound as exc:
            raise NotFoundError("user not found", detail={"user_id": user.id}) from exc

    def delete_user(self, user_id: str) -> int:
        """Remove the account and every refresh token it owns.

        Credentials go first so a concurrent refresh cannot find a live token
        whose owner is already gone. Returns the number of revoked tokens.
        """
        self.get_user(user_id)
        revoked = self.credentials.delete_by_user_id(user_id)
        try:
            self.identities.delete(user_id)
        except RecordNotFound as exc:
            raise NotFoundError("user not found", detail={"user_id": user_id}) from exc
        self.logger.info("user_deleted", user_id=user_id, revoked=revoked)
        return revoked


__all__ = ["UserService"]
