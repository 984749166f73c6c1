"""Resolution result models."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from truename.models.name import Name


class ResolutionTier(str, Enum):
    """Which rule of the resolution algorithm produced the name."""

    CONSENT = "consent_based"
    CONTEXT = "context_specific"
    PREFERRED_FALLBACK = "preferred_fallback"
    ERROR_FALLBACK = "error_fallback"


class FallbackReason(str, Enum):
    """Why resolution fell through to the preferred name."""

    NO_ACTIVE_CONSENT = "no_active_consent"
    NO_CONTEXT_ASSIGNMENT = "context_not_found_or_no_assignment"
    NO_CONSENT_AND_NO_CONTEXT = "no_consent_and_no_context_assignment"
    NO_SPECIFIC_REQUEST = "no_specific_request"


class ResolutionResult(BaseModel):
    """The one name disclosed for a (target, requester, context) triple."""

    name_text: str
    tier: ResolutionTier
    name: Name | None = None  # None when the sentinel was returned
    context_id: UUID | None = None
    context_name: str | None = None
    fallback_reason: FallbackReason | None = None
    error: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.name is None
