"""OAuth models: client applications, app context bindings, bearer sessions.

Identifier formats:
  client_id      tnp_ + 16 lowercase hex (64 bits)
  session token  tnp_ + 32 lowercase hex (128 bits)
"""

import re
from datetime import datetime, UTC
from urllib.parse import urlsplit
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

TOKEN_PREFIX = "tnp_"
CLIENT_ID_PATTERN = re.compile(r"^tnp_[a-f0-9]{16}$")
SESSION_TOKEN_PATTERN = re.compile(r"^tnp_[a-f0-9]{32}$")
APP_NAME_PATTERN = re.compile(r"^[a-z0-9-]+$")
DOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9\-.]*[a-z0-9])?\.[a-z]{2,}$")

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})


def is_valid_client_id(value: str) -> bool:
    return bool(CLIENT_ID_PATTERN.match(value))


def is_valid_session_token(value: str) -> bool:
    return bool(SESSION_TOKEN_PATTERN.match(value))


def is_valid_return_url(value: str) -> bool:
    """Well-formed absolute URL; HTTPS unless pointing at localhost."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    if not parts.netloc or not parts.hostname:
        return False
    if parts.scheme == "https":
        return True
    return parts.scheme == "http" and parts.hostname in _LOCAL_HOSTS


class ClientApplication(BaseModel):
    """A registered third-party application."""

    client_id: str
    display_name: str
    app_name: str
    publisher_domain: str
    active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_used_at: datetime | None = None


class ClientRegistration(BaseModel):
    """Request to register a client application."""

    app_name: str = Field(min_length=1, max_length=50)
    display_name: str = Field(min_length=1, max_length=100)
    publisher_domain: str = Field(min_length=1, max_length=253)

    @field_validator("app_name")
    @classmethod
    def _check_app_name(cls, value: str) -> str:
        if not APP_NAME_PATTERN.match(value):
            raise ValueError(
                "App name must contain only lowercase letters, numbers, and hyphens"
            )
        return value

    @field_validator("display_name")
    @classmethod
    def _strip_display_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Display name is required")
        return value

    @field_validator("publisher_domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        value = value.strip().lower()
        if not DOMAIN_PATTERN.match(value):
            raise ValueError("Publisher domain must be a valid domain format")
        return value


class AppContextAssignment(BaseModel):
    """Which context applies when a client asks about a profile.

    Unique on ``(profile_id, client_id)``; written with last-write-wins upserts.
    """

    profile_id: UUID
    client_id: str
    context_id: UUID
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Session(BaseModel):
    """A bearer grant issued by Authorize.

    ``used_at`` is stamped on the first successful resolve and is
    informational only; the token stays valid until ``expires_at``.
    """

    id: UUID = Field(default_factory=uuid4)
    profile_id: UUID
    client_id: str
    token: str
    issued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime
    used_at: datetime | None = None
    return_url: str
    state: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class AuthorizeRequest(BaseModel):
    """Input of the Authorize operation."""

    client_id: str
    context_id: UUID
    return_url: str
    state: str | None = Field(default=None, max_length=255)

    @field_validator("client_id")
    @classmethod
    def _check_client_id(cls, value: str) -> str:
        if not is_valid_client_id(value):
            raise ValueError("Client ID must be in format: tnp_[16 hex chars]")
        return value

    @field_validator("return_url")
    @classmethod
    def _check_return_url(cls, value: str) -> str:
        if not is_valid_return_url(value):
            raise ValueError(
                "Return URL must be a valid URL using HTTPS (HTTP allowed for localhost)"
            )
        return value


class ClientSummary(BaseModel):
    """Client fields echoed back by Authorize."""

    client_id: str
    display_name: str
    publisher_domain: str


class ContextSummary(BaseModel):
    """Context fields echoed back by Authorize."""

    id: UUID
    context_name: str


class AuthorizeResponse(BaseModel):
    """Output of the Authorize operation."""

    session_token: str
    expires_at: datetime
    redirect_url: str
    client: ClientSummary
    context: ContextSummary


class OIDCClaims(BaseModel):
    """OIDC-shaped claims emitted by resolving a bearer token."""

    # Mandatory
    sub: str
    iss: str
    aud: str
    iat: int
    exp: int
    nbf: int
    jti: str

    # Standard optional
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    nickname: str | None = None
    preferred_username: str | None = None

    # TrueName-specific
    context_name: str
    app_name: str
    client_id: str | None = None


class RevokeSessionsRequest(BaseModel):
    """Body of ``POST /oauth/revoke``."""

    client_id: str
    remove_assignment: bool = False
