from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from oauthgate.logging import get_logger
from oauthgate.storage.common import ReadWriteLock, detached, secrets_match
from oauthgate.storage.errors import ConstraintViolation, RecordNotFound
from oauthgate.storage.models import Credential, User, utcnow


class MemoryIdentityStore:
    """In-process user store keyed by user id.

    Email and provider-identity lookups scan the mapping. ``create`` only
    enforces id uniqueness; use ``get_or_create_by_provider`` to resolve a
    provider identity without a check-then-act window.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self._users: Dict[str, User] = {}
        self._lock = ReadWriteLock()

    def create(self, user: User) -> User:
        with self._lock.write():
            if user.id in self._users:
                raise ConstraintViolation("user already exists", {"user_id": user.id})
            self._users[user.id] = detached(user)
            return detached(user)

    def get_or_create_by_provider(self, user: User) -> Tuple[User, bool]:
        """Return the user owning ``user``'s provider identity, creating it if absent."""
        with self._lock.write():
            existing = self._scan_provider(user.provider, user.provider_subject_id)
            if existing is not None:
                return detached(existing), False
            if user.id in self._users:
                raise ConstraintViolation("user already exists", {"user_id": user.id})
            self._users[user.id] = detached(user)
            return detached(user), True

    def find_by_id(self, user_id: str) -> User:
        with self._lock.read():
            user = self._users.get(user_id)
            if user is None:
                raise RecordNotFound("user not found", {"user_id": user_id})
            return detached(user)

    def find_by_email(self, email: str) -> User:
        with self._lock.read():
            user = next((u for u in self._users.values() if u.email == email), None)
            if user is None:
                raise RecordNotFound("user not found", {"field": "email"})
            return detached(user)

    def find_by_provider_identity(self, provider: str, subject_id: str) -> User:
        with self._lock.read():
            user = self._scan_provider(provider, subject_id)
            if user is None:
                raise RecordNotFound(
                    "user not found", {"provider": provider, "field": "provider_subject_id"}
                )
            return detached(user)

    def update(self, user: User) -> User:
        with self._lock.write():
            if user.id not in self._users:
                raise RecordNotFound("user not found", {"user_id": user.id})
            self._users[user.id] = detached(user)
            return detached(user)

    def delete(self, user_id: str) -> None:
        with self._lock.write():
            if self._users.pop(user_id, None) is None:
                raise RecordNotFound("user not found", {"user_id": user_id})

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._users)

    def _scan_provider(self, provider: str, subject_id: str) -> Optional[User]:
        # caller holds the lock
        for user in self._users.values():
            if user.provider == provider and user.provider_subject_id == subject_id:
                return user
        return None


class MemoryCredentialStore:
    """In-process refresh-token store keyed by credential id."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self._credentials: Dict[str, Credential] = {}
        self._lock = ReadWriteLock()

    def create(self, credential: Credential) -> Credential:
        with self._lock.write():
            if credential.id in self._credentials:
                raise ConstraintViolation(
                    "credential already exists", {"credential_id": credential.id}
                )
            self._credentials[credential.id] = detached(credential)
            return detached(credential)

    def find_by_id(self, credential_id: str) -> Credential:
        with self._lock.read():
            credential = self._credentials.get(credential_id)
            if credential is None:
                raise RecordNotFound("credential not found", {"credential_id": credential_id})
            return detached(credential)

    def find_by_refresh_token(self, refresh_token: str) -> Credential:
        with self._lock.read():
            # Compare every record so timing does not depend on the match position.
            found: Optional[Credential] = None
            for credential in self._credentials.values():
                if secrets_match(credential.refresh_token, refresh_token):
                    found = credential
            if found is None:
                raise RecordNotFound("credential not found", {"field": "refresh_token"})
            return detached(found)

    def find_by_user_id(self, user_id: str) -> List[Credential]:
        with self._lock.read():
            owned = [c for c in self._credentials.values() if c.user_id == user_id]
            return [detached(c) for c in sorted(owned, key=lambda c: c.created_at)]

    def delete(self, credential_id: str) -> None:
        with self._lock.write():
            if self._credentials.pop(credential_id, None) is None:
                raise RecordNotFound("credential not found", {"credential_id": credential_id})

    def delete_by_user_id(self, user_id: str) -> int:
        with self._lock.write():
            stale = [cid for cid, c in self._credentials.items() if c.user_id == user_id]
            for cid in stale:
                self._credentials.pop(cid, None)
            return len(stale)

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Sweep records past expiry; expiry is otherwise only checked at use time."""
        cutoff = now or utcnow()
        with self._lock.write():
            stale = [cid for cid, c in self._credentials.items() if c.is_expired(cutoff)]
            for cid in stale:
                self._credentials.pop(cid, None)
        if stale:
            self.logger.info("expired_credentials_swept", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._credentials)


__all__ = ["MemoryIdentityStore", "MemoryCredentialStore"]
