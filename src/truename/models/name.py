"""Name models: the catalog of names a user can disclose."""

from datetime import datetime, UTC
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator


class NameKind(str, Enum):
    """Kind of a registered name."""

    LEGAL = "LEGAL"
    PREFERRED = "PREFERRED"
    NICKNAME = "NICKNAME"
    ALIAS = "ALIAS"
    PROFESSIONAL = "PROFESSIONAL"
    CULTURAL = "CULTURAL"


def _clean_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Name text cannot be empty")
    return value


class Name(BaseModel):
    """A name owned by a user.

    At most one name per owner carries ``is_preferred``; the store enforces it.
    """

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    text: str = Field(min_length=1, max_length=100)
    kind: NameKind
    is_preferred: bool = False
    source: str = "user_entered"
    verified: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class NameCreate(BaseModel):
    """Request to register a new name."""

    text: str = Field(min_length=1, max_length=100)
    kind: NameKind
    is_preferred: bool = False
    source: str = "user_entered"

    @field_validator("text")
    @classmethod
    def _strip(cls, value: str) -> str:
        return _clean_text(value)


class NameUpdate(BaseModel):
    """Request to edit a name. Preferred status changes go through set_preferred."""

    text: str | None = Field(default=None, min_length=1, max_length=100)
    kind: NameKind | None = None

    @field_validator("text")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return None if value is None else _clean_text(value)
