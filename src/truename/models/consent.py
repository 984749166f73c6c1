"""Consent models (granter -> requester permission to resolve via a context).

Lifecycle:
  PENDING -> GRANTED -> REVOKED
  PENDING | GRANTED -> EXPIRED (time-based, evaluated lazily)
REVOKED and EXPIRED are terminal.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Literal
from uuid import UUID, uuid4

from pydantic import AwareDatetime, BaseModel, Field


class ConsentStatus(str, Enum):
    """Status of a consent record."""

    PENDING = "PENDING"
    GRANTED = "GRANTED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


LIVE_STATUSES = frozenset({ConsentStatus.PENDING, ConsentStatus.GRANTED})


class Consent(BaseModel):
    """A consent record between a granter (name owner) and a requester."""

    id: UUID = Field(default_factory=uuid4)
    granter_id: UUID
    requester_id: UUID
    context_id: UUID
    status: ConsentStatus = ConsentStatus.PENDING
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    granted_at: datetime | None = None
    revoked_at: datetime | None = None
    expires_at: AwareDatetime | None = None

    @property
    def is_live(self) -> bool:
        """Whether the stored status is PENDING or GRANTED."""
        return self.status in LIVE_STATUSES

    def is_expired(self, now: datetime) -> bool:
        """Whether ``expires_at`` has passed at ``now``."""
        return self.expires_at is not None and self.expires_at <= now

    def effective_status(self, now: datetime) -> ConsentStatus:
        """Status with time-based expiry applied."""
        if self.is_live and self.is_expired(now):
            return ConsentStatus.EXPIRED
        return self.status


class ConsentRequest(BaseModel):
    """Request to open a consent for a context."""

    granter_id: UUID
    requester_id: UUID
    context_id: UUID
    expires_at: AwareDatetime | None = None


class ConsentActionRequest(BaseModel):
    """Body of ``POST /consents``.

    For ``request`` the caller is the requester and ``target_user_id`` the
    granter; for ``grant`` and ``revoke`` the caller is the granter and
    ``target_user_id`` the requester.
    """

    action: Literal["request", "grant", "revoke"]
    target_user_id: UUID
    context_id: UUID | None = None
    expires_at: AwareDatetime | None = None
