"""A user's catalog of names."""

import logging
from datetime import datetime, UTC
from typing import TYPE_CHECKING
from uuid import UUID

from truename.exceptions import DeletionBlockedError, NotFoundError
from truename.models.name import Name, NameCreate, NameUpdate

if TYPE_CHECKING:
    from truename.db.repository import Repository

logger = logging.getLogger(__name__)


class NameRegistry:
    """Adds, edits and removes names while keeping one preferred name.

    The first name a user registers becomes their preferred name. Moving
    the preferred flag clears the old one in the same unit of work.
    """

    def __init__(self, db: "Repository") -> None:
        self.db = db

    async def _get_owned(self, owner_id: UUID, name_id: UUID) -> Name:
        name = await self.db.get_name(name_id, owner_id)
        if name is None:
            raise NotFoundError("Name")
        return name

    async def add_name(self, owner_id: UUID, data: NameCreate) -> Name:
        """Register a name.

        Args:
            owner_id: The owner
            data: Text, kind and whether it should be preferred

        Returns:
            The created name
        """
        current = await self.db.get_preferred_name(owner_id)
        is_preferred = data.is_preferred or current is None

        async with self.db.transaction():
            if is_preferred and current is not None:
                await self.db.clear_preferred_name(owner_id)
            name = await self.db.insert_name(
                Name(
                    owner_id=owner_id,
                    text=data.text,
                    kind=data.kind,
                    is_preferred=is_preferred,
                    source=data.source,
                )
            )

        logger.info(f"Added {name.kind.value} name {name.id} for {owner_id}")
        return name

    async def list_names(self, owner_id: UUID) -> list[Name]:
        return await self.db.list_names(owner_id)

    async def set_preferred_name(self, owner_id: UUID, name_id: UUID) -> Name:
        """Make ``name_id`` the owner's only preferred name."""
        name = await self._get_owned(owner_id, name_id)
        if name.is_preferred:
            return name

        async with self.db.transaction():
            await self.db.clear_preferred_name(owner_id)
            name = await self.db.update_name(
                name.model_copy(
                    update={"is_preferred": True, "updated_at": datetime.now(UTC)}
                )
            )

        logger.info(f"Preferred name for {owner_id} is now {name_id}")
        return name

    async def update_name(
        self, owner_id: UUID, name_id: UUID, data: NameUpdate
    ) -> Name:
        name = await self._get_owned(owner_id, name_id)
        changes = data.model_dump(exclude_none=True)
        if not changes:
            return name
        changes["updated_at"] = datetime.now(UTC)
        return await self.db.update_name(name.model_copy(update=changes))

    async def delete_name(self, owner_id: UUID, name_id: UUID) -> None:
        """Delete a name that nothing depends on.

        Raises:
            NotFoundError: If the name is not the owner's
            DeletionBlockedError: If it is the last name, is assigned to a
                context, or is the preferred name while others exist
        """
        name = await self._get_owned(owner_id, name_id)

        names = await self.db.list_names(owner_id)
        if len(names) <= 1:
            raise DeletionBlockedError("Cannot delete your only name", "LAST_NAME")

        assignments = await self.db.list_context_name_assignments_for_name(name_id)
        if assignments:
            raise DeletionBlockedError(
                f"Name is assigned to {len(assignments)} context(s)", "NAME_ASSIGNED"
            )

        if name.is_preferred:
            raise DeletionBlockedError(
                "Choose another preferred name before deleting this one",
                "PREFERRED_NAME",
            )

        await self.db.delete_name(name_id, owner_id)
        logger.info(f"Deleted name {name_id} for {owner_id}")
