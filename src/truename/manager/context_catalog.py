"""A user's contexts and the name assigned to each."""

import logging
from datetime import datetime, UTC
from typing import TYPE_CHECKING
from uuid import UUID

from truename.exceptions import (
    ConflictError,
    DeletionBlockedError,
    NotFoundError,
    UniqueViolationError,
)
from truename.models.context import (
    Context,
    ContextCreate,
    ContextDeletionCheck,
    ContextNameAssignment,
)

if TYPE_CHECKING:
    from truename.db.repository import Repository

logger = logging.getLogger(__name__)


class ContextCatalog:
    """Manages contexts. Deletion is refused while anything still uses one."""

    def __init__(self, db: "Repository") -> None:
        self.db = db

    async def _get_owned(self, owner_id: UUID, context_id: UUID) -> Context:
        context = await self.db.get_context(context_id, owner_id)
        if context is None:
            raise NotFoundError("Context")
        return context

    async def create_context(self, owner_id: UUID, data: ContextCreate) -> Context:
        """Create a context.

        Raises:
            ConflictError: If the owner already has a context of that name
        """
        try:
            context = await self.db.insert_context(
                Context(owner_id=owner_id, name=data.name, description=data.description)
            )
        except UniqueViolationError as e:
            raise ConflictError(f"A context named '{data.name}' already exists") from e

        logger.info(f"Created context '{context.name}' for {owner_id}")
        return context

    async def list_contexts(self, owner_id: UUID) -> list[Context]:
        return await self.db.list_contexts(owner_id)

    async def rename_context(
        self, owner_id: UUID, context_id: UUID, data: ContextCreate
    ) -> Context:
        context = await self._get_owned(owner_id, context_id)
        updated = context.model_copy(
            update={
                "name": data.name,
                "description": data.description,
                "updated_at": datetime.now(UTC),
            }
        )
        try:
            return await self.db.update_context(updated)
        except UniqueViolationError as e:
            raise ConflictError(f"A context named '{data.name}' already exists") from e

    async def assign_name_to_context(
        self, owner_id: UUID, context_id: UUID, name_id: UUID
    ) -> ContextNameAssignment:
        """Make ``name_id`` the name shown through ``context_id``.

        Replaces any name previously assigned to the context. Both must
        belong to ``owner_id``.
        """
        context = await self._get_owned(owner_id, context_id)
        name = await self.db.get_name(name_id, owner_id)
        if name is None:
            raise NotFoundError("Name")

        assignment = await self.db.upsert_context_name_assignment(
            ContextNameAssignment(context_id=context.id, name_id=name.id, owner_id=owner_id)
        )
        logger.info(f"Context '{context.name}' now shows name {name.id}")
        return assignment

    async def unassign_name(self, owner_id: UUID, context_id: UUID) -> bool:
        await self._get_owned(owner_id, context_id)
        return await self.db.delete_context_name_assignment(context_id)

    async def can_delete_context(
        self, owner_id: UUID, context_id: UUID
    ) -> ContextDeletionCheck:
        """Report what, if anything, blocks deleting a context."""
        await self._get_owned(owner_id, context_id)

        bindings = await self.db.list_app_context_assignments_for_context(context_id)
        if bindings:
            return ContextDeletionCheck(
                context_id=context_id,
                can_delete=False,
                reason=f"Context is used by {len(bindings)} connected app(s)",
                reason_code="APP_BINDINGS",
                bound_client_ids=[b.client_id for b in bindings],
            )

        consents = await self.db.list_live_consents_for_context(context_id)
        if consents:
            return ContextDeletionCheck(
                context_id=context_id,
                can_delete=False,
                reason=f"Context is referenced by {len(consents)} live consent(s)",
                reason_code="LIVE_CONSENTS",
                live_consent_ids=[c.id for c in consents],
            )

        return ContextDeletionCheck(context_id=context_id, can_delete=True)

    async def delete_context(self, owner_id: UUID, context_id: UUID) -> None:
        """Delete a context and its name assignment.

        Revoked and expired consents for the context are removed with it.

        Raises:
            NotFoundError: If the context is not the owner's
            DeletionBlockedError: If apps or live consents still use it
        """
        check = await self.can_delete_context(owner_id, context_id)
        if not check.can_delete:
            raise DeletionBlockedError(check.reason or "Context in use", check.reason_code or "")

        async with self.db.transaction():
            await self.db.delete_context_name_assignment(context_id)
            await self.db.delete_context(context_id, owner_id)

        logger.info(f"Deleted context {context_id} for {owner_id}")
