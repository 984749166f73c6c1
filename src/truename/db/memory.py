"""In-process store implementing the Repository protocol.

Used by the test-suite and by ``STORE_BACKEND=memory`` for local demos.
Enforces the same unique constraints as the relational schema.
"""

import logging
import time
from datetime import datetime
from typing import Any
from uuid import UUID

from truename.db.repository import (
    UQ_CLIENT_DOMAIN_APP,
    UQ_CLIENT_ID,
    UQ_CONTEXT_NAME,
    UQ_LIVE_CONSENT,
    UQ_PREFERRED_NAME,
    UQ_SESSION_TOKEN,
    UnitOfWorkMixin,
)
from truename.exceptions import UniqueViolationError
from truename.models.audit import AuditLogEntry
from truename.models.consent import Consent, ConsentStatus, LIVE_STATUSES
from truename.models.context import Context, ContextNameAssignment
from truename.models.name import Name
from truename.models.oauth import AppContextAssignment, ClientApplication, Session

logger = logging.getLogger(__name__)


class MemoryDatabase(UnitOfWorkMixin):
    """Dictionary-backed store. Returns copies so callers never alias rows."""

    def __init__(self) -> None:
        self._names: dict[UUID, Name] = {}
        self._contexts: dict[UUID, Context] = {}
        # context_id -> assignment (one name per context)
        self._context_names: dict[UUID, ContextNameAssignment] = {}
        self._consents: dict[UUID, Consent] = {}
        self._clients: dict[str, ClientApplication] = {}
        # (profile_id, client_id) -> assignment
        self._app_contexts: dict[tuple[UUID, str], AppContextAssignment] = {}
        self._sessions: dict[UUID, Session] = {}
        self._audit: list[AuditLogEntry] = []

    async def health_check(self) -> dict[str, Any]:
        start = time.perf_counter()
        return {
            "healthy": True,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "error": None,
        }

    # -------------------------------------------------------------------------
    # Names
    # -------------------------------------------------------------------------

    def _check_preferred(self, name: Name) -> None:
        if not name.is_preferred:
            return
        for other in self._names.values():
            if (
                other.owner_id == name.owner_id
                and other.is_preferred
                and other.id != name.id
            ):
                raise UniqueViolationError(UQ_PREFERRED_NAME)

    async def insert_name(self, name: Name) -> Name:
        self._check_preferred(name)
        self._names[name.id] = name.model_copy()
        self._on_rollback(self._forget(self._names, name.id))
        return name.model_copy()

    async def get_name(self, name_id: UUID, owner_id: UUID) -> Name | None:
        name = self._names.get(name_id)
        if name is None or name.owner_id != owner_id:
            return None
        return name.model_copy()

    async def list_names(self, owner_id: UUID) -> list[Name]:
        names = [n for n in self._names.values() if n.owner_id == owner_id]
        names.sort(key=lambda n: n.created_at)
        return [n.model_copy() for n in names]

    async def get_preferred_name(self, owner_id: UUID) -> Name | None:
        for name in self._names.values():
            if name.owner_id == owner_id and name.is_preferred:
                return name.model_copy()
        return None

    async def update_name(self, name: Name) -> Name:
        previous = self._names.get(name.id)
        if previous is None:
            raise KeyError(name.id)
        self._check_preferred(name)
        self._names[name.id] = name.model_copy()
        self._on_rollback(self._restore(self._names, name.id, previous))
        return name.model_copy()

    async def clear_preferred_name(self, owner_id: UUID) -> int:
        cleared = 0
        for name_id, name in list(self._names.items()):
            if name.owner_id == owner_id and name.is_preferred:
                self._names[name_id] = name.model_copy(update={"is_preferred": False})
                self._on_rollback(self._restore(self._names, name_id, name))
                cleared += 1
        return cleared

    async def delete_name(self, name_id: UUID, owner_id: UUID) -> bool:
        name = self._names.get(name_id)
        if name is None or name.owner_id != owner_id:
            return False
        del self._names[name_id]
        self._on_rollback(self._restore(self._names, name_id, name))
        return True

    # -------------------------------------------------------------------------
    # Contexts
    # -------------------------------------------------------------------------

    def _check_context_name(self, context: Context) -> None:
        for other in self._contexts.values():
            if (
                other.owner_id == context.owner_id
                and other.name == context.name
                and other.id != context.id
            ):
                raise UniqueViolationError(UQ_CONTEXT_NAME)

    async def insert_context(self, context: Context) -> Context:
        self._check_context_name(context)
        self._contexts[context.id] = context.model_copy()
        self._on_rollback(self._forget(self._contexts, context.id))
        return context.model_copy()

    async def get_context(self, context_id: UUID, owner_id: UUID) -> Context | None:
        context = self._contexts.get(context_id)
        if context is None or context.owner_id != owner_id:
            return None
        return context.model_copy()

    async def get_context_by_name(self, owner_id: UUID, name: str) -> Context | None:
        for context in self._contexts.values():
            if context.owner_id == owner_id and context.name == name:
                return context.model_copy()
        return None

    async def list_contexts(self, owner_id: UUID) -> list[Context]:
        contexts = [c for c in self._contexts.values() if c.owner_id == owner_id]
        contexts.sort(key=lambda c: c.created_at)
        return [c.model_copy() for c in contexts]

    async def update_context(self, context: Context) -> Context:
        previous = self._contexts.get(context.id)
        if previous is None:
            raise KeyError(context.id)
        self._check_context_name(context)
        self._contexts[context.id] = context.model_copy()
        self._on_rollback(self._restore(self._contexts, context.id, previous))
        return context.model_copy()

    async def delete_context(self, context_id: UUID, owner_id: UUID) -> bool:
        context = self._contexts.get(context_id)
        if context is None or context.owner_id != owner_id:
            return False
        del self._contexts[context_id]
        self._on_rollback(self._restore(self._contexts, context_id, context))
        # consents.context_id cascades
        history = [c for c in self._consents.values() if c.context_id == context_id]
        for consent in history:
            del self._consents[consent.id]
            self._on_rollback(self._restore(self._consents, consent.id, consent))
        return True

    # -------------------------------------------------------------------------
    # Context -> name assignments
    # -------------------------------------------------------------------------

    async def get_context_name_assignment(
        self, context_id: UUID
    ) -> ContextNameAssignment | None:
        assignment = self._context_names.get(context_id)
        return assignment.model_copy() if assignment else None

    async def list_context_name_assignments_for_name(
        self, name_id: UUID
    ) -> list[ContextNameAssignment]:
        return [
            a.model_copy() for a in self._context_names.values() if a.name_id == name_id
        ]

    async def upsert_context_name_assignment(
        self, assignment: ContextNameAssignment
    ) -> ContextNameAssignment:
        previous = self._context_names.get(assignment.context_id)
        self._context_names[assignment.context_id] = assignment.model_copy()
        self._on_rollback(
            self._restore(self._context_names, assignment.context_id, previous)
        )
        return assignment.model_copy()

    async def delete_context_name_assignment(self, context_id: UUID) -> bool:
        previous = self._context_names.pop(context_id, None)
        if previous is None:
            return False
        self._on_rollback(self._restore(self._context_names, context_id, previous))
        return True

    # -------------------------------------------------------------------------
    # Consents
    # -------------------------------------------------------------------------

    async def insert_consent(self, consent: Consent) -> Consent:
        if consent.status in LIVE_STATUSES:
            for other in self._consents.values():
                if (
                    other.granter_id == consent.granter_id
                    and other.requester_id == consent.requester_id
                    and other.status in LIVE_STATUSES
                ):
                    raise UniqueViolationError(UQ_LIVE_CONSENT)
        self._consents[consent.id] = consent.model_copy()
        self._on_rollback(self._forget(self._consents, consent.id))
        return consent.model_copy()

    async def get_live_consent(
        self, granter_id: UUID, requester_id: UUID
    ) -> Consent | None:
        for consent in self._consents.values():
            if (
                consent.granter_id == granter_id
                and consent.requester_id == requester_id
                and consent.status in LIVE_STATUSES
            ):
                return consent.model_copy()
        return None

    async def list_consents_for_pair(
        self,
        granter_id: UUID,
        requester_id: UUID,
        status: ConsentStatus | None = None,
    ) -> list[Consent]:
        consents = [
            c
            for c in self._consents.values()
            if c.granter_id == granter_id
            and c.requester_id == requester_id
            and (status is None or c.status == status)
        ]
        consents.sort(key=lambda c: c.requested_at, reverse=True)
        return [c.model_copy() for c in consents]

    async def list_consents_for_user(self, user_id: UUID) -> list[Consent]:
        consents = [
            c
            for c in self._consents.values()
            if c.granter_id == user_id or c.requester_id == user_id
        ]
        consents.sort(key=lambda c: c.requested_at, reverse=True)
        return [c.model_copy() for c in consents]

    async def list_live_consents_for_context(self, context_id: UUID) -> list[Consent]:
        return [
            c.model_copy()
            for c in self._consents.values()
            if c.context_id == context_id and c.status in LIVE_STATUSES
        ]

    async def transition_consent(
        self,
        consent_id: UUID,
        expected_status: ConsentStatus,
        changes: dict[str, Any],
    ) -> Consent | None:
        current = self._consents.get(consent_id)
        if current is None or current.status != expected_status:
            return None
        updated = current.model_copy(update=changes)
        self._consents[consent_id] = updated
        self._on_rollback(self._restore(self._consents, consent_id, current))
        return updated.model_copy()

    # -------------------------------------------------------------------------
    # Client applications
    # -------------------------------------------------------------------------

    async def insert_client(self, client: ClientApplication) -> ClientApplication:
        if client.client_id in self._clients:
            raise UniqueViolationError(UQ_CLIENT_ID)
        for other in self._clients.values():
            if (
                other.publisher_domain == client.publisher_domain
                and other.app_name == client.app_name
            ):
                raise UniqueViolationError(UQ_CLIENT_DOMAIN_APP)
        self._clients[client.client_id] = client.model_copy()
        self._on_rollback(self._forget(self._clients, client.client_id))
        return client.model_copy()

    async def get_client(self, client_id: str) -> ClientApplication | None:
        client = self._clients.get(client_id)
        return client.model_copy() if client else None

    async def get_client_by_app(
        self, publisher_domain: str, app_name: str
    ) -> ClientApplication | None:
        for client in self._clients.values():
            if client.publisher_domain == publisher_domain and client.app_name == app_name:
                return client.model_copy()
        return None

    async def update_client(self, client: ClientApplication) -> ClientApplication:
        previous = self._clients.get(client.client_id)
        if previous is None:
            raise KeyError(client.client_id)
        self._clients[client.client_id] = client.model_copy()
        self._on_rollback(self._restore(self._clients, client.client_id, previous))
        return client.model_copy()

    # -------------------------------------------------------------------------
    # App context assignments
    # -------------------------------------------------------------------------

    async def upsert_app_context_assignment(
        self, assignment: AppContextAssignment
    ) -> AppContextAssignment:
        key = (assignment.profile_id, assignment.client_id)
        previous = self._app_contexts.get(key)
        if previous is not None:
            assignment = assignment.model_copy(update={"created_at": previous.created_at})
        self._app_contexts[key] = assignment.model_copy()
        self._on_rollback(self._restore(self._app_contexts, key, previous))
        return assignment.model_copy()

    async def get_app_context_assignment(
        self, profile_id: UUID, client_id: str
    ) -> AppContextAssignment | None:
        assignment = self._app_contexts.get((profile_id, client_id))
        return assignment.model_copy() if assignment else None

    async def delete_app_context_assignment(
        self, profile_id: UUID, client_id: str
    ) -> bool:
        key = (profile_id, client_id)
        previous = self._app_contexts.pop(key, None)
        if previous is None:
            return False
        self._on_rollback(self._restore(self._app_contexts, key, previous))
        return True

    async def list_app_context_assignments_for_context(
        self, context_id: UUID
    ) -> list[AppContextAssignment]:
        return [
            a.model_copy()
            for a in self._app_contexts.values()
            if a.context_id == context_id
        ]

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def insert_session(self, session: Session) -> Session:
        for other in self._sessions.values():
            if other.token == session.token:
                raise UniqueViolationError(UQ_SESSION_TOKEN)
        self._sessions[session.id] = session.model_copy()
        self._on_rollback(self._forget(self._sessions, session.id))
        return session.model_copy()

    async def get_session_by_token(self, token: str) -> Session | None:
        for session in self._sessions.values():
            if session.token == token:
                return session.model_copy()
        return None

    async def mark_session_used(self, session_id: UUID, used_at: datetime) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.used_at is not None:
            return False
        self._sessions[session_id] = session.model_copy(update={"used_at": used_at})
        self._on_rollback(self._restore(self._sessions, session_id, session))
        return True

    async def delete_live_sessions(
        self, profile_id: UUID, client_id: str, now: datetime
    ) -> int:
        doomed = [
            s
            for s in self._sessions.values()
            if s.profile_id == profile_id
            and s.client_id == client_id
            and s.expires_at > now
        ]
        for session in doomed:
            del self._sessions[session.id]
            self._on_rollback(self._restore(self._sessions, session.id, session))
        return len(doomed)

    async def delete_expired_sessions(self, now: datetime) -> int:
        doomed = [s for s in self._sessions.values() if s.expires_at <= now]
        for session in doomed:
            del self._sessions[session.id]
            self._on_rollback(self._restore(self._sessions, session.id, session))
        return len(doomed)

    async def list_sessions(self, profile_id: UUID) -> list[Session]:
        sessions = [s for s in self._sessions.values() if s.profile_id == profile_id]
        sessions.sort(key=lambda s: s.issued_at, reverse=True)
        return [s.model_copy() for s in sessions]

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        self._audit.append(entry.model_copy())

    async def list_audit_entries(
        self, user_id: UUID, limit: int = 50
    ) -> list[AuditLogEntry]:
        entries = [e for e in self._audit if e.target_user_id == user_id]
        entries.sort(key=lambda e: e.accessed_at, reverse=True)
        return [e.model_copy() for e in entries[:limit]]

    # -------------------------------------------------------------------------
    # Rollback helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _forget(table: dict, key: Any):
        async def undo() -> None:
            table.pop(key, None)

        return undo

    @staticmethod
    def _restore(table: dict, key: Any, previous: Any):
        async def undo() -> None:
            if previous is None:
                table.pop(key, None)
            else:
                table[key] = previous

        return undo
