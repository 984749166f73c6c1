"""Registration of third-party client applications."""

import logging
import secrets
from typing import TYPE_CHECKING

from truename.exceptions import NotFoundError, UniqueViolationError
from truename.models.oauth import TOKEN_PREFIX, ClientApplication, ClientRegistration

if TYPE_CHECKING:
    from truename.db.repository import Repository

logger = logging.getLogger(__name__)

MAX_CLIENT_ID_ATTEMPTS = 5


def generate_client_id() -> str:
    """``tnp_`` followed by 64 random bits as lowercase hex."""
    return f"{TOKEN_PREFIX}{secrets.token_hex(8)}"


class ClientRegistry:
    """Registers clients, one per (publisher_domain, app_name)."""

    def __init__(self, db: "Repository") -> None:
        self.db = db

    async def register_client(self, data: ClientRegistration) -> ClientApplication:
        """Register a client, or return the one already registered for the app.

        Args:
            data: App name, display name and publisher domain

        Returns:
            The (new or existing) client application
        """
        existing = await self.db.get_client_by_app(data.publisher_domain, data.app_name)
        if existing is not None:
            logger.debug(f"Client already registered: {existing.client_id}")
            return existing

        for _ in range(MAX_CLIENT_ID_ATTEMPTS):
            client = ClientApplication(
                client_id=generate_client_id(),
                display_name=data.display_name,
                app_name=data.app_name,
                publisher_domain=data.publisher_domain,
            )
            try:
                client = await self.db.insert_client(client)
            except UniqueViolationError:
                # Either a client_id collision or a concurrent registration
                existing = await self.db.get_client_by_app(
                    data.publisher_domain, data.app_name
                )
                if existing is not None:
                    return existing
                continue
            logger.info(
                f"Registered client {client.client_id} "
                f"({data.app_name}@{data.publisher_domain})"
            )
            return client

        raise UniqueViolationError("client_id")

    async def get_active_client(self, client_id: str) -> ClientApplication:
        """Raises NotFoundError for unknown and deactivated clients alike."""
        client = await self.db.get_client(client_id)
        if client is None or not client.active:
            raise NotFoundError("Client application")
        return client

    async def deactivate_client(self, client_id: str) -> ClientApplication:
        client = await self.db.get_client(client_id)
        if client is None:
            raise NotFoundError("Client application")
        if not client.active:
            return client
        client = await self.db.update_client(client.model_copy(update={"active": False}))
        logger.info(f"Deactivated client {client_id}")
        return client
