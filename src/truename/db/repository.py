"""Repository protocol: the seam between the managers and the backing store.

Managers only talk to a ``Repository``. ``DatabaseClient`` (Supabase) and
``MemoryDatabase`` (in-process) both satisfy it and enforce the same
unique constraints, raising ``UniqueViolationError`` when one is hit.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, runtime_checkable
from uuid import UUID

from truename.models.audit import AuditLogEntry
from truename.models.consent import Consent, ConsentStatus
from truename.models.context import Context, ContextNameAssignment
from truename.models.name import Name
from truename.models.oauth import AppContextAssignment, ClientApplication, Session

logger = logging.getLogger(__name__)

# Constraint names shared by every store implementation
UQ_PREFERRED_NAME = "names_one_preferred_per_owner"
UQ_CONTEXT_NAME = "user_contexts_unique_owner_name"
UQ_LIVE_CONSENT = "consents_one_live_per_pair"
UQ_CLIENT_ID = "oauth_client_registry_pkey"
UQ_CLIENT_DOMAIN_APP = "oauth_client_registry_unique_domain_app"
UQ_SESSION_TOKEN = "oauth_sessions_session_token_key"

UndoAction = Callable[[], Awaitable[None]]

_undo_stack: ContextVar[list[UndoAction] | None] = ContextVar(
    "truename_undo_stack", default=None
)


@runtime_checkable
class Repository(Protocol):
    """Every store operation the managers rely on."""

    def transaction(self) -> Any: ...

    async def health_check(self) -> dict[str, Any]: ...

    # Names
    async def insert_name(self, name: Name) -> Name: ...
    async def get_name(self, name_id: UUID, owner_id: UUID) -> Name | None: ...
    async def list_names(self, owner_id: UUID) -> list[Name]: ...
    async def get_preferred_name(self, owner_id: UUID) -> Name | None: ...
    async def update_name(self, name: Name) -> Name: ...
    async def clear_preferred_name(self, owner_id: UUID) -> int: ...
    async def delete_name(self, name_id: UUID, owner_id: UUID) -> bool: ...

    # Contexts
    async def insert_context(self, context: Context) -> Context: ...
    async def get_context(self, context_id: UUID, owner_id: UUID) -> Context | None: ...
    async def get_context_by_name(self, owner_id: UUID, name: str) -> Context | None: ...
    async def list_contexts(self, owner_id: UUID) -> list[Context]: ...
    async def update_context(self, context: Context) -> Context: ...
    async def delete_context(self, context_id: UUID, owner_id: UUID) -> bool: ...

    # Context -> name assignments
    async def get_context_name_assignment(
        self, context_id: UUID
    ) -> ContextNameAssignment | None: ...
    async def list_context_name_assignments_for_name(
        self, name_id: UUID
    ) -> list[ContextNameAssignment]: ...
    async def upsert_context_name_assignment(
        self, assignment: ContextNameAssignment
    ) -> ContextNameAssignment: ...
    async def delete_context_name_assignment(self, context_id: UUID) -> bool: ...

    # Consents
    async def insert_consent(self, consent: Consent) -> Consent: ...
    async def get_live_consent(
        self, granter_id: UUID, requester_id: UUID
    ) -> Consent | None: ...
    async def list_consents_for_pair(
        self,
        granter_id: UUID,
        requester_id: UUID,
        status: ConsentStatus | None = None,
    ) -> list[Consent]: ...
    async def list_consents_for_user(self, user_id: UUID) -> list[Consent]: ...
    async def list_live_consents_for_context(self, context_id: UUID) -> list[Consent]: ...
    async def transition_consent(
        self,
        consent_id: UUID,
        expected_status: ConsentStatus,
        changes: dict[str, Any],
    ) -> Consent | None: ...

    # Client applications
    async def insert_client(self, client: ClientApplication) -> ClientApplication: ...
    async def get_client(self, client_id: str) -> ClientApplication | None: ...
    async def get_client_by_app(
        self, publisher_domain: str, app_name: str
    ) -> ClientApplication | None: ...
    async def update_client(self, client: ClientApplication) -> ClientApplication: ...

    # App context assignments
    async def upsert_app_context_assignment(
        self, assignment: AppContextAssignment
    ) -> AppContextAssignment: ...
    async def get_app_context_assignment(
        self, profile_id: UUID, client_id: str
    ) -> AppContextAssignment | None: ...
    async def delete_app_context_assignment(
        self, profile_id: UUID, client_id: str
    ) -> bool: ...
    async def list_app_context_assignments_for_context(
        self, context_id: UUID
    ) -> list[AppContextAssignment]: ...

    # Sessions
    async def insert_session(self, session: Session) -> Session: ...
    async def get_session_by_token(self, token: str) -> Session | None: ...
    async def mark_session_used(self, session_id: UUID, used_at: datetime) -> bool: ...
    async def delete_live_sessions(
        self, profile_id: UUID, client_id: str, now: datetime
    ) -> int: ...
    async def delete_expired_sessions(self, now: datetime) -> int: ...
    async def list_sessions(self, profile_id: UUID) -> list[Session]: ...

    # Audit
    async def insert_audit_entry(self, entry: AuditLogEntry) -> None: ...
    async def list_audit_entries(
        self, user_id: UUID, limit: int = 50
    ) -> list[AuditLogEntry]: ...


class UnitOfWorkMixin:
    """Compensating unit of work shared by the store implementations.

    Writes made inside ``transaction()`` register an undo action; if the
    block raises, the undo actions run newest first and the error
    propagates. Nested ``transaction()`` blocks join the outermost one.
    """

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _undo_stack.get() is not None:
            yield
            return

        stack: list[UndoAction] = []
        token = _undo_stack.set(stack)
        try:
            yield
        except BaseException:
            logger.warning(f"Rolling back unit of work ({len(stack)} writes)")
            _undo_stack.set(None)
            for undo in reversed(stack):
                try:
                    await undo()
                except Exception:
                    logger.exception("Rollback step failed")
            raise
        finally:
            _undo_stack.reset(token)

    @staticmethod
    def _on_rollback(undo: UndoAction) -> None:
        """Register an undo action if a unit of work is active."""
        stack = _undo_stack.get()
        if stack is not None:
            stack.append(undo)
