"""Pydantic models for TrueName - the contracts."""

from truename.models.audit import AuditAction, AuditLogEntry
from truename.models.consent import (
    LIVE_STATUSES,
    Consent,
    ConsentActionRequest,
    ConsentRequest,
    ConsentStatus,
)
from truename.models.context import (
    Context,
    ContextCreate,
    ContextDeletionCheck,
    ContextNameAssignment,
)
from truename.models.name import Name, NameCreate, NameKind, NameUpdate
from truename.models.oauth import (
    AppContextAssignment,
    AuthorizeRequest,
    AuthorizeResponse,
    ClientApplication,
    ClientRegistration,
    ClientSummary,
    ContextSummary,
    OIDCClaims,
    RevokeSessionsRequest,
    Session,
)
from truename.models.resolution import (
    FallbackReason,
    ResolutionResult,
    ResolutionTier,
)

__all__ = [
    "AppContextAssignment",
    "AuditAction",
    "AuditLogEntry",
    "AuthorizeRequest",
    "AuthorizeResponse",
    "ClientApplication",
    "ClientRegistration",
    "ClientSummary",
    "Consent",
    "ConsentActionRequest",
    "ConsentRequest",
    "ConsentStatus",
    "Context",
    "ContextCreate",
    "ContextDeletionCheck",
    "ContextNameAssignment",
    "ContextSummary",
    "FallbackReason",
    "LIVE_STATUSES",
    "Name",
    "NameCreate",
    "NameKind",
    "NameUpdate",
    "OIDCClaims",
    "ResolutionResult",
    "ResolutionTier",
    "RevokeSessionsRequest",
    "Session",
]
