"""Append-only audit trail of disclosures and consent changes."""

import asyncio
import logging
from typing import Any, TYPE_CHECKING
from uuid import UUID

from truename.models.audit import AuditAction, AuditLogEntry

if TYPE_CHECKING:
    from truename.db.repository import Repository

logger = logging.getLogger(__name__)

# Strong references to scheduled writes; the event loop only keeps weak ones
_pending_writes: set[asyncio.Task] = set()


class AuditLog:
    """Writes audit entries without ever failing the caller.

    A failed write is logged with its traceback and otherwise ignored;
    the operation that triggered it carries on.
    """

    def __init__(self, db: "Repository") -> None:
        self.db = db

    async def record(
        self,
        target_user_id: UUID,
        action: AuditAction = AuditAction.NAME_DISCLOSED,
        requester_id: UUID | None = None,
        context_id: UUID | None = None,
        disclosed_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Append one entry.

        Args:
            target_user_id: Whose name or consent the entry is about
            action: What happened
            requester_id: Who asked, if known
            context_id: Context involved, if any
            disclosed_name: Name text handed out (disclosures only)
            details: Free-form extras (tier, fallback reason, ...)

        Returns:
            The entry written, or None if the store rejected it
        """
        entry = AuditLogEntry(
            target_user_id=target_user_id,
            requester_id=requester_id,
            context_id=context_id,
            disclosed_name=disclosed_name,
            action=action,
            details=details or {},
        )
        try:
            await self.db.insert_audit_entry(entry)
        except Exception:
            logger.exception(
                f"Audit write failed: action={action.value} target={target_user_id}"
            )
            return None
        return entry

    async def list_entries(self, user_id: UUID, limit: int = 50) -> list[AuditLogEntry]:
        """Audit trail for a user, newest first."""
        return await self.db.list_audit_entries(user_id, limit=limit)

    def record_in_background(self, **entry: Any) -> asyncio.Task:
        """Schedule ``record`` without waiting for the store.

        Takes the same keyword arguments as ``record``. The caller's
        response is never held up by a slow audit write.
        """
        task = asyncio.create_task(self.record(**entry))
        _pending_writes.add(task)
        task.add_done_callback(_pending_writes.discard)
        return task

    @staticmethod
    async def drain() -> None:
        """Wait for the audit writes scheduled on the running loop."""
        loop = asyncio.get_running_loop()
        while pending := [
            t for t in _pending_writes if t.get_loop() is loop and not t.done()
        ]:
            await asyncio.gather(*pending)
