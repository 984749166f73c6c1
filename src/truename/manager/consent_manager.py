"""Consent state machine.

    (none) -> PENDING -(grant)-> GRANTED -(revoke)-> REVOKED
    PENDING | GRANTED -(time)-> EXPIRED

Expiry is evaluated lazily: whenever a live consent is read past its
``expires_at`` it is persisted as EXPIRED before anything else happens.
At most one live consent exists per (granter, requester) pair; the store's
unique index settles concurrent requests.
"""

import logging
from datetime import datetime, UTC
from typing import TYPE_CHECKING
from uuid import UUID

from truename.exceptions import NotFoundError, UniqueViolationError, ValidationError
from truename.models.audit import AuditAction
from truename.models.consent import Consent, ConsentStatus

if TYPE_CHECKING:
    from truename.db.repository import Repository
    from truename.manager.audit_log import AuditLog

logger = logging.getLogger(__name__)


class ConsentManager:
    """Request, grant, revoke and list consents."""

    def __init__(self, db: "Repository", audit: "AuditLog") -> None:
        self.db = db
        self.audit = audit

    async def _live_consent(
        self, granter_id: UUID, requester_id: UUID, now: datetime
    ) -> Consent | None:
        """The pair's live consent, expiring it first if its time is up."""
        consent = await self.db.get_live_consent(granter_id, requester_id)
        if consent is None or not consent.is_expired(now):
            return consent

        expired = await self.db.transition_consent(
            consent.id, consent.status, {"status": ConsentStatus.EXPIRED}
        )
        if expired is not None:
            logger.info(f"Consent {consent.id} expired (was {consent.status.value})")
            return None
        # Lost a race with another transition; look again
        return await self._live_consent(granter_id, requester_id, now)

    async def request_consent(
        self,
        granter_id: UUID,
        requester_id: UUID,
        context_id: UUID,
        expires_at: datetime | None = None,
    ) -> UUID:
        """Open a PENDING consent, or return the pair's existing live one.

        Args:
            granter_id: The name owner being asked
            requester_id: The viewer asking
            context_id: Granter's context whose name would be disclosed
            expires_at: Optional hard expiry

        Returns:
            ID of the new or already-live consent

        Raises:
            ValidationError: Same user on both sides, or a naive or past expiry
            NotFoundError: If the context is not the granter's
        """
        if granter_id == requester_id:
            raise ValidationError("Cannot request consent from yourself")

        now = datetime.now(UTC)
        if expires_at is not None and expires_at.tzinfo is None:
            raise ValidationError("Consent expiry must include a UTC offset")
        if expires_at is not None and expires_at <= now:
            raise ValidationError("Consent expiry must be in the future")

        context = await self.db.get_context(context_id, granter_id)
        if context is None:
            raise NotFoundError("Context")

        existing = await self._live_consent(granter_id, requester_id, now)
        if existing is not None:
            logger.debug(f"Live consent {existing.id} already exists for pair")
            return existing.id

        consent = Consent(
            granter_id=granter_id,
            requester_id=requester_id,
            context_id=context_id,
            requested_at=now,
            expires_at=expires_at,
        )
        try:
            consent = await self.db.insert_consent(consent)
        except UniqueViolationError:
            existing = await self.db.get_live_consent(granter_id, requester_id)
            if existing is None:
                raise
            logger.info(f"Concurrent consent request resolved to {existing.id}")
            return existing.id

        logger.info(
            f"Consent {consent.id} requested: granter={granter_id} "
            f"requester={requester_id} context='{context.name}'"
        )
        await self.audit.record(
            target_user_id=granter_id,
            action=AuditAction.CONSENT_REQUESTED,
            requester_id=requester_id,
            context_id=context_id,
            details={"consent_id": str(consent.id), "context_name": context.name},
        )
        return consent.id

    async def grant_consent(self, granter_id: UUID, requester_id: UUID) -> bool:
        """Move the pair's PENDING consent to GRANTED.

        Returns:
            False when there is no pending consent to grant
        """
        now = datetime.now(UTC)
        consent = await self._live_consent(granter_id, requester_id, now)
        if consent is None or consent.status != ConsentStatus.PENDING:
            return False

        granted = await self.db.transition_consent(
            consent.id,
            ConsentStatus.PENDING,
            {"status": ConsentStatus.GRANTED, "granted_at": now},
        )
        if granted is None:
            return False

        logger.info(f"Consent {consent.id} granted")
        await self.audit.record(
            target_user_id=granter_id,
            action=AuditAction.CONSENT_GRANTED,
            requester_id=requester_id,
            context_id=consent.context_id,
            details={"consent_id": str(consent.id)},
        )
        return True

    async def revoke_consent(self, granter_id: UUID, requester_id: UUID) -> bool:
        """Move the pair's GRANTED consent to REVOKED.

        Returns:
            False when there is no granted consent to revoke
        """
        now = datetime.now(UTC)
        consent = await self._live_consent(granter_id, requester_id, now)
        if consent is None or consent.status != ConsentStatus.GRANTED:
            return False

        revoked = await self.db.transition_consent(
            consent.id,
            ConsentStatus.GRANTED,
            {"status": ConsentStatus.REVOKED, "revoked_at": now},
        )
        if revoked is None:
            return False

        logger.info(f"Consent {consent.id} revoked")
        await self.audit.record(
            target_user_id=granter_id,
            action=AuditAction.CONSENT_REVOKED,
            requester_id=requester_id,
            context_id=consent.context_id,
            details={"consent_id": str(consent.id)},
        )
        return True

    async def list_consents(self, user_id: UUID) -> list[Consent]:
        """Consents where the user is granter or requester, newest first.

        Statuses are reported with time-based expiry applied.
        """
        now = datetime.now(UTC)
        return [
            c.model_copy(update={"status": c.effective_status(now)})
            for c in await self.db.list_consents_for_user(user_id)
        ]
