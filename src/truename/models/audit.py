"""Audit log models. Entries are append-only."""

from datetime import datetime, UTC
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """What an audit entry records."""

    NAME_DISCLOSED = "NAME_DISCLOSED"
    CONSENT_REQUESTED = "CONSENT_REQUESTED"
    CONSENT_GRANTED = "CONSENT_GRANTED"
    CONSENT_REVOKED = "CONSENT_REVOKED"


class AuditLogEntry(BaseModel):
    """One audit record."""

    id: UUID = Field(default_factory=uuid4)
    target_user_id: UUID
    requester_id: UUID | None = None
    context_id: UUID | None = None
    disclosed_name: str | None = None
    action: AuditAction = AuditAction.NAME_DISCLOSED
    details: dict[str, Any] = Field(default_factory=dict)
    accessed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
