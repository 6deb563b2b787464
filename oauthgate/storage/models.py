from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware UTC helper to avoid naive datetime usage."""

    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    provider: str
    provider_subject_id: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        provider: str,
        provider_subject_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> "User":
        created = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            provider=provider,
            provider_subject_id=provider_subject_id,
            created_at=created,
            updated_at=created,
        )


@dataclass
class Credential:
    """Stored refresh-token record; the refresh token is a bearer secret."""

    id: str
    user_id: str
    refresh_token: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        user_id: str,
        ttl: timedelta,
        *,
        now: Optional[datetime] = None,
    ) -> "Credential":
        issued = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            refresh_token=secrets.token_urlsafe(48),
            expires_at=issued + ttl,
            created_at=issued,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at
