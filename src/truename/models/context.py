"""Context models: user-defined groupings that pick which name is shown."""

from datetime import datetime, UTC
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator


class Context(BaseModel):
    """A named context owned by a user. ``(owner_id, name)`` is unique."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ContextCreate(BaseModel):
    """Request to create a context."""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Context name cannot be empty")
        return value


class ContextNameAssignment(BaseModel):
    """Binds exactly one name to a context. Unique on ``context_id``."""

    context_id: UUID
    name_id: UUID
    owner_id: UUID
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ContextDeletionCheck(BaseModel):
    """Result of the safeguard check run before a context is deleted."""

    context_id: UUID
    can_delete: bool
    reason: str | None = None
    reason_code: str | None = None  # APP_BINDINGS, LIVE_CONSENTS
    bound_client_ids: list[str] = Field(default_factory=list)
    live_consent_ids: list[UUID] = Field(default_factory=list)
