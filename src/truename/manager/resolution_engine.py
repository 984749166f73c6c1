"""Name resolution: pick the one name to disclose to a viewer.

Rules, first match wins:

1. Consent   - the requester holds a GRANTED, unexpired consent from the
               target; disclose the name assigned to the consent's context,
               or go straight to the preferred name if it has none.
2. Context   - with no matching consent, a context hint (id or exact
               name) matches one of the target's contexts; disclose the
               name assigned to it.
3. Preferred - disclose the target's preferred name.

A target with no names at all resolves to the anonymous sentinel.
Resolution never raises: store failures also degrade to the sentinel.
"""

import logging
from datetime import datetime, UTC
from typing import TYPE_CHECKING
from uuid import UUID

from truename.config import get_settings
from truename.models.consent import Consent, ConsentStatus
from truename.models.context import Context
from truename.models.name import Name
from truename.models.resolution import FallbackReason, ResolutionResult, ResolutionTier

if TYPE_CHECKING:
    from truename.db.repository import Repository
    from truename.manager.audit_log import AuditLog

logger = logging.getLogger(__name__)


def _fallback_reason(
    requester_id: UUID | None, context_hint: str | UUID | None
) -> FallbackReason:
    if requester_id is not None and context_hint is not None:
        return FallbackReason.NO_CONSENT_AND_NO_CONTEXT
    if requester_id is not None:
        return FallbackReason.NO_ACTIVE_CONSENT
    if context_hint is not None:
        return FallbackReason.NO_CONTEXT_ASSIGNMENT
    return FallbackReason.NO_SPECIFIC_REQUEST


class ResolutionEngine:
    """Resolves names and records every disclosure in the audit log."""

    def __init__(self, db: "Repository", audit: "AuditLog") -> None:
        self.db = db
        self.audit = audit

    async def resolve(
        self,
        target_id: UUID,
        requester_id: UUID | None = None,
        context_hint: str | UUID | None = None,
    ) -> ResolutionResult:
        """Resolve the name ``requester_id`` should see for ``target_id``.

        Args:
            target_id: Whose name is being resolved
            requester_id: The viewer, if known
            context_hint: A context id or exact (case-sensitive) context name

        Returns:
            ResolutionResult naming the tier that fired
        """
        try:
            result = await self._resolve(target_id, requester_id, context_hint)
        except Exception as e:
            logger.exception(f"Resolution failed for target {target_id}")
            result = ResolutionResult(
                name_text=get_settings().anonymous_name,
                tier=ResolutionTier.ERROR_FALLBACK,
                error=str(e),
            )

        details: dict = {"tier": result.tier.value}
        if result.fallback_reason is not None:
            details["fallback_reason"] = result.fallback_reason.value
        if result.context_name is not None:
            details["context_name"] = result.context_name
        if context_hint is not None:
            details["requested_context"] = str(context_hint)

        self.audit.record_in_background(
            target_user_id=target_id,
            requester_id=requester_id,
            context_id=result.context_id,
            disclosed_name=result.name_text,
            details=details,
        )
        return result

    async def _resolve(
        self,
        target_id: UUID,
        requester_id: UUID | None,
        context_hint: str | UUID | None,
    ) -> ResolutionResult:
        consent = None
        if requester_id is not None:
            consent = await self._granted_consent(target_id, requester_id)

        if consent is not None:
            context = await self.db.get_context(consent.context_id, target_id)
            name = await self._assigned_name(consent.context_id, target_id)
            if name is not None:
                return ResolutionResult(
                    name_text=name.text,
                    tier=ResolutionTier.CONSENT,
                    name=name,
                    context_id=consent.context_id,
                    context_name=context.name if context else None,
                )
            # A matching consent settles the tier; the hint is not consulted
            logger.debug(
                f"Consent {consent.id} context has no assigned name, using preferred name"
            )
        elif context_hint is not None:
            context = await self._find_context(target_id, context_hint)
            if context is not None:
                name = await self._assigned_name(context.id, target_id)
                if name is not None:
                    return ResolutionResult(
                        name_text=name.text,
                        tier=ResolutionTier.CONTEXT,
                        name=name,
                        context_id=context.id,
                        context_name=context.name,
                    )

        name = await self._preferred_name(target_id)
        return ResolutionResult(
            name_text=name.text if name else get_settings().anonymous_name,
            tier=ResolutionTier.PREFERRED_FALLBACK,
            name=name,
            fallback_reason=_fallback_reason(requester_id, context_hint),
        )

    async def _granted_consent(
        self, granter_id: UUID, requester_id: UUID
    ) -> Consent | None:
        """Most recently granted, unexpired consent for the pair."""
        now = datetime.now(UTC)
        granted = [
            c
            for c in await self.db.list_consents_for_pair(
                granter_id, requester_id, status=ConsentStatus.GRANTED
            )
            if not c.is_expired(now)
        ]
        if not granted:
            return None
        if len(granted) > 1:
            logger.warning(
                f"{len(granted)} GRANTED consents for granter={granter_id} "
                f"requester={requester_id}; using the most recent"
            )
        epoch = datetime.min.replace(tzinfo=UTC)
        return max(granted, key=lambda c: (c.granted_at or epoch, str(c.id)))

    async def _find_context(
        self, owner_id: UUID, hint: str | UUID
    ) -> Context | None:
        """Match a hint against the owner's contexts, by id then by exact name."""
        context_id = hint if isinstance(hint, UUID) else None
        if context_id is None:
            try:
                context_id = UUID(hint)
            except ValueError:
                context_id = None
        if context_id is not None:
            context = await self.db.get_context(context_id, owner_id)
            if context is not None:
                return context
        return await self.db.get_context_by_name(owner_id, str(hint))

    async def _assigned_name(self, context_id: UUID, owner_id: UUID) -> Name | None:
        assignment = await self.db.get_context_name_assignment(context_id)
        if assignment is None or assignment.owner_id != owner_id:
            return None
        return await self.db.get_name(assignment.name_id, owner_id)

    async def _preferred_name(self, owner_id: UUID) -> Name | None:
        """The preferred name, else the oldest name, else None."""
        name = await self.db.get_preferred_name(owner_id)
        if name is not None:
            return name
        names = await self.db.list_names(owner_id)
        return names[0] if names else None
