"""Per-(profile, client) context bindings.

"When client X asks about me, use context Y." One row per pair, written
with last-write-wins upserts so re-authorizing simply moves the binding.
"""

import logging
from datetime import datetime, UTC
from typing import TYPE_CHECKING
from uuid import UUID

from truename.exceptions import NotFoundError
from truename.models.oauth import AppContextAssignment

if TYPE_CHECKING:
    from truename.db.repository import Repository

logger = logging.getLogger(__name__)


class ContextRegistry:
    """Reads and writes app context assignments."""

    def __init__(self, db: "Repository") -> None:
        self.db = db

    async def assign_context(
        self, profile_id: UUID, client_id: str, context_id: UUID
    ) -> AppContextAssignment:
        """Bind a client to one of the profile's contexts.

        Args:
            profile_id: The profile granting access
            client_id: The client application
            context_id: Context to use for that client

        Returns:
            The stored assignment

        Raises:
            NotFoundError: If the context is not owned by the profile
        """
        context = await self.db.get_context(context_id, profile_id)
        if context is None:
            raise NotFoundError("Context")

        now = datetime.now(UTC)
        assignment = await self.db.upsert_app_context_assignment(
            AppContextAssignment(
                profile_id=profile_id,
                client_id=client_id,
                context_id=context_id,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Client {client_id} bound to context '{context.name}'")
        return assignment

    async def get_assigned_context(
        self, profile_id: UUID, client_id: str
    ) -> AppContextAssignment | None:
        return await self.db.get_app_context_assignment(profile_id, client_id)

    async def remove_assignment(self, profile_id: UUID, client_id: str) -> bool:
        removed = await self.db.delete_app_context_assignment(profile_id, client_id)
        if removed:
            logger.info(f"Client {client_id} unbound for profile {profile_id}")
        return removed
