"""Supabase database client implementing the Repository protocol."""

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError
from supabase import create_client, Client

from truename.config import get_settings
from truename.db.repository import UnitOfWorkMixin
from truename.exceptions import DependencyError, UniqueViolationError
from truename.models.audit import AuditLogEntry
from truename.models.consent import Consent, ConsentStatus, LIVE_STATUSES
from truename.models.context import Context, ContextNameAssignment
from truename.models.name import Name
from truename.models.oauth import AppContextAssignment, ClientApplication, Session

logger = logging.getLogger(__name__)

NAMES = "names"
CONTEXTS = "user_contexts"
CONTEXT_NAMES = "context_name_assignments"
CONSENTS = "consents"
CLIENTS = "oauth_client_registry"
APP_CONTEXTS = "app_context_assignments"
SESSIONS = "oauth_sessions"
AUDIT = "audit_log_entries"

_UNIQUE_VIOLATION = "23505"
_LIVE = [s.value for s in LIVE_STATUSES]


def _jsonable(changes: dict[str, Any]) -> dict[str, Any]:
    """Convert a partial update to PostgREST-friendly values."""
    out: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        elif isinstance(value, UUID):
            value = str(value)
        out[key] = value
    return out


class DatabaseClient(UnitOfWorkMixin):
    """Client for Supabase database operations."""

    def __init__(self) -> None:
        settings = get_settings()
        self.client: Client = create_client(
            settings.supabase_url,
            settings.supabase_key,
        )

    def _execute(self, query: Any) -> Any:
        """Run a PostgREST query, translating driver errors.

        Raises:
            UniqueViolationError: On a unique constraint violation
            DependencyError: On any other store failure
        """
        try:
            return query.execute()
        except APIError as e:
            if e.code == _UNIQUE_VIOLATION:
                raise UniqueViolationError(e.message or "unique constraint") from e
            logger.error(f"Supabase query failed: code={e.code} message={e.message}")
            raise DependencyError(f"Store query failed: {e.message}") from e
        except Exception as e:
            logger.error(f"Supabase unreachable: {e}")
            raise DependencyError(f"Store unreachable: {e}") from e

    # -------------------------------------------------------------------------
    # Generic row helpers (also used as rollback steps)
    # -------------------------------------------------------------------------

    def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        result = self._execute(self.client.table(table).insert(row))
        return result.data[0]

    def _select(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        query = self.client.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, str(value) if isinstance(value, UUID) else value)
        return self._execute(query).data

    def _delete(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        query = self.client.table(table).delete()
        for column, value in filters.items():
            query = query.eq(column, str(value) if isinstance(value, UUID) else value)
        return self._execute(query).data

    def _upsert(
        self, table: str, row: dict[str, Any], on_conflict: str
    ) -> dict[str, Any]:
        result = self._execute(
            self.client.table(table).upsert(row, on_conflict=on_conflict)
        )
        return result.data[0]

    def _undo_insert(self, table: str, **filters: Any):
        async def undo() -> None:
            self._delete(table, **filters)

        return undo

    def _undo_restore(self, table: str, rows: list[dict[str, Any]], on_conflict: str):
        async def undo() -> None:
            for row in rows:
                self._upsert(table, row, on_conflict)

        return undo

    def _undo_upsert(
        self,
        table: str,
        previous: list[dict[str, Any]],
        on_conflict: str,
        **filters: Any,
    ):
        async def undo() -> None:
            if previous:
                for row in previous:
                    self._upsert(table, row, on_conflict)
            else:
                self._delete(table, **filters)

        return undo

    # -------------------------------------------------------------------------
    # Names
    # -------------------------------------------------------------------------

    async def insert_name(self, name: Name) -> Name:
        """Insert a name.

        Args:
            name: The name to store

        Returns:
            The stored name
        """
        row = self._insert(NAMES, name.model_dump(mode="json"))
        self._on_rollback(self._undo_insert(NAMES, id=name.id))
        logger.debug(f"Created name {name.id} for owner {name.owner_id}")
        return Name(**row)

    async def get_name(self, name_id: UUID, owner_id: UUID) -> Name | None:
        rows = self._select(NAMES, id=name_id, owner_id=owner_id)
        return Name(**rows[0]) if rows else None

    async def list_names(self, owner_id: UUID) -> list[Name]:
        result = self._execute(
            self.client.table(NAMES)
            .select("*")
            .eq("owner_id", str(owner_id))
            .order("created_at")
        )
        return [Name(**row) for row in result.data]

    async def get_preferred_name(self, owner_id: UUID) -> Name | None:
        rows = self._select(NAMES, owner_id=owner_id, is_preferred=True)
        return Name(**rows[0]) if rows else None

    async def update_name(self, name: Name) -> Name:
        previous = self._select(NAMES, id=name.id)
        result = self._execute(
            self.client.table(NAMES)
            .update(name.model_dump(mode="json", exclude={"id", "owner_id", "created_at"}))
            .eq("id", str(name.id))
        )
        self._on_rollback(self._undo_restore(NAMES, previous, "id"))
        return Name(**result.data[0])

    async def clear_preferred_name(self, owner_id: UUID) -> int:
        """Unset ``is_preferred`` on every name of an owner.

        Args:
            owner_id: The owner

        Returns:
            Number of names changed
        """
        result = self._execute(
            self.client.table(NAMES)
            .update({"is_preferred": False})
            .eq("owner_id", str(owner_id))
            .eq("is_preferred", True)
        )
        changed = [{**row, "is_preferred": True} for row in result.data]
        self._on_rollback(self._undo_restore(NAMES, changed, "id"))
        return len(result.data)

    async def delete_name(self, name_id: UUID, owner_id: UUID) -> bool:
        rows = self._delete(NAMES, id=name_id, owner_id=owner_id)
        self._on_rollback(self._undo_restore(NAMES, rows, "id"))
        return len(rows) > 0

    # -------------------------------------------------------------------------
    # Contexts
    # -------------------------------------------------------------------------

    async def insert_context(self, context: Context) -> Context:
        row = self._insert(CONTEXTS, context.model_dump(mode="json"))
        self._on_rollback(self._undo_insert(CONTEXTS, id=context.id))
        logger.debug(f"Created context '{context.name}' for owner {context.owner_id}")
        return Context(**row)

    async def get_context(self, context_id: UUID, owner_id: UUID) -> Context | None:
        """Get a context (with owner check for isolation).

        Args:
            context_id: The context ID
            owner_id: The expected owner

        Returns:
            Context if found and owned, None otherwise
        """
        rows = self._select(CONTEXTS, id=context_id, owner_id=owner_id)
        return Context(**rows[0]) if rows else None

    async def get_context_by_name(self, owner_id: UUID, name: str) -> Context | None:
        rows = self._select(CONTEXTS, owner_id=owner_id, name=name)
        return Context(**rows[0]) if rows else None

    async def list_contexts(self, owner_id: UUID) -> list[Context]:
        result = self._execute(
            self.client.table(CONTEXTS)
            .select("*")
            .eq("owner_id", str(owner_id))
            .order("created_at")
        )
        return [Context(**row) for row in result.data]

    async def update_context(self, context: Context) -> Context:
        previous = self._select(CONTEXTS, id=context.id)
        result = self._execute(
            self.client.table(CONTEXTS)
            .update(
                context.model_dump(mode="json", exclude={"id", "owner_id", "created_at"})
            )
            .eq("id", str(context.id))
        )
        self._on_rollback(self._undo_restore(CONTEXTS, previous, "id"))
        return Context(**result.data[0])

    async def delete_context(self, context_id: UUID, owner_id: UUID) -> bool:
        rows = self._delete(CONTEXTS, id=context_id, owner_id=owner_id)
        self._on_rollback(self._undo_restore(CONTEXTS, rows, "id"))
        return len(rows) > 0

    # -------------------------------------------------------------------------
    # Context -> name assignments
    # -------------------------------------------------------------------------

    async def get_context_name_assignment(
        self, context_id: UUID
    ) -> ContextNameAssignment | None:
        rows = self._select(CONTEXT_NAMES, context_id=context_id)
        return ContextNameAssignment(**rows[0]) if rows else None

    async def list_context_name_assignments_for_name(
        self, name_id: UUID
    ) -> list[ContextNameAssignment]:
        return [
            ContextNameAssignment(**row)
            for row in self._select(CONTEXT_NAMES, name_id=name_id)
        ]

    async def upsert_context_name_assignment(
        self, assignment: ContextNameAssignment
    ) -> ContextNameAssignment:
        previous = self._select(CONTEXT_NAMES, context_id=assignment.context_id)
        row = self._upsert(
            CONTEXT_NAMES, assignment.model_dump(mode="json"), "context_id"
        )
        self._on_rollback(
            self._undo_upsert(
                CONTEXT_NAMES, previous, "context_id", context_id=assignment.context_id
            )
        )
        return ContextNameAssignment(**row)

    async def delete_context_name_assignment(self, context_id: UUID) -> bool:
        rows = self._delete(CONTEXT_NAMES, context_id=context_id)
        self._on_rollback(self._undo_restore(CONTEXT_NAMES, rows, "context_id"))
        return len(rows) > 0

    # -------------------------------------------------------------------------
    # Consents
    # -------------------------------------------------------------------------

    async def insert_consent(self, consent: Consent) -> Consent:
        """Insert a consent row.

        The partial unique index on live consents rejects a second
        PENDING/GRANTED row for the same pair.

        Args:
            consent: The consent to store

        Returns:
            The stored consent
        """
        row = self._insert(CONSENTS, consent.model_dump(mode="json"))
        self._on_rollback(self._undo_insert(CONSENTS, id=consent.id))
        return Consent(**row)

    async def get_live_consent(
        self, granter_id: UUID, requester_id: UUID
    ) -> Consent | None:
        result = self._execute(
            self.client.table(CONSENTS)
            .select("*")
            .eq("granter_id", str(granter_id))
            .eq("requester_id", str(requester_id))
            .in_("status", _LIVE)
        )
        return Consent(**result.data[0]) if result.data else None

    async def list_consents_for_pair(
        self,
        granter_id: UUID,
        requester_id: UUID,
        status: ConsentStatus | None = None,
    ) -> list[Consent]:
        query = (
            self.client.table(CONSENTS)
            .select("*")
            .eq("granter_id", str(granter_id))
            .eq("requester_id", str(requester_id))
        )
        if status is not None:
            query = query.eq("status", status.value)
        result = self._execute(query.order("requested_at", desc=True))
        return [Consent(**row) for row in result.data]

    async def list_consents_for_user(self, user_id: UUID) -> list[Consent]:
        uid = str(user_id)
        result = self._execute(
            self.client.table(CONSENTS)
            .select("*")
            .or_(f"granter_id.eq.{uid},requester_id.eq.{uid}")
            .order("requested_at", desc=True)
        )
        return [Consent(**row) for row in result.data]

    async def list_live_consents_for_context(self, context_id: UUID) -> list[Consent]:
        result = self._execute(
            self.client.table(CONSENTS)
            .select("*")
            .eq("context_id", str(context_id))
            .in_("status", _LIVE)
        )
        return [Consent(**row) for row in result.data]

    async def transition_consent(
        self,
        consent_id: UUID,
        expected_status: ConsentStatus,
        changes: dict[str, Any],
    ) -> Consent | None:
        """Compare-and-set a consent's status.

        Args:
            consent_id: The consent ID
            expected_status: Status the row must still have
            changes: Columns to write

        Returns:
            The updated consent, or None if the row moved on concurrently
        """
        previous = self._select(CONSENTS, id=consent_id)
        result = self._execute(
            self.client.table(CONSENTS)
            .update(_jsonable(changes))
            .eq("id", str(consent_id))
            .eq("status", expected_status.value)
        )
        if not result.data:
            return None
        self._on_rollback(self._undo_restore(CONSENTS, previous, "id"))
        return Consent(**result.data[0])

    # -------------------------------------------------------------------------
    # Client applications
    # -------------------------------------------------------------------------

    async def insert_client(self, client: ClientApplication) -> ClientApplication:
        row = self._insert(CLIENTS, client.model_dump(mode="json"))
        self._on_rollback(self._undo_insert(CLIENTS, client_id=client.client_id))
        return ClientApplication(**row)

    async def get_client(self, client_id: str) -> ClientApplication | None:
        rows = self._select(CLIENTS, client_id=client_id)
        return ClientApplication(**rows[0]) if rows else None

    async def get_client_by_app(
        self, publisher_domain: str, app_name: str
    ) -> ClientApplication | None:
        rows = self._select(CLIENTS, publisher_domain=publisher_domain, app_name=app_name)
        return ClientApplication(**rows[0]) if rows else None

    async def update_client(self, client: ClientApplication) -> ClientApplication:
        previous = self._select(CLIENTS, client_id=client.client_id)
        result = self._execute(
            self.client.table(CLIENTS)
            .update(client.model_dump(mode="json", exclude={"client_id", "created_at"}))
            .eq("client_id", client.client_id)
        )
        self._on_rollback(self._undo_restore(CLIENTS, previous, "client_id"))
        return ClientApplication(**result.data[0])

    # -------------------------------------------------------------------------
    # App context assignments
    # -------------------------------------------------------------------------

    async def upsert_app_context_assignment(
        self, assignment: AppContextAssignment
    ) -> AppContextAssignment:
        """Insert or replace the (profile, client) binding.

        Args:
            assignment: The binding to write

        Returns:
            The stored binding
        """
        previous = self._select(
            APP_CONTEXTS,
            profile_id=assignment.profile_id,
            client_id=assignment.client_id,
        )
        row = self._upsert(
            APP_CONTEXTS,
            assignment.model_dump(mode="json", exclude={"created_at"}),
            "profile_id,client_id",
        )
        self._on_rollback(
            self._undo_upsert(
                APP_CONTEXTS,
                previous,
                "profile_id,client_id",
                profile_id=assignment.profile_id,
                client_id=assignment.client_id,
            )
        )
        return AppContextAssignment(**row)

    async def get_app_context_assignment(
        self, profile_id: UUID, client_id: str
    ) -> AppContextAssignment | None:
        rows = self._select(APP_CONTEXTS, profile_id=profile_id, client_id=client_id)
        return AppContextAssignment(**rows[0]) if rows else None

    async def delete_app_context_assignment(
        self, profile_id: UUID, client_id: str
    ) -> bool:
        rows = self._delete(APP_CONTEXTS, profile_id=profile_id, client_id=client_id)
        self._on_rollback(
            self._undo_restore(APP_CONTEXTS, rows, "profile_id,client_id")
        )
        return len(rows) > 0

    async def list_app_context_assignments_for_context(
        self, context_id: UUID
    ) -> list[AppContextAssignment]:
        return [
            AppContextAssignment(**row)
            for row in self._select(APP_CONTEXTS, context_id=context_id)
        ]

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def insert_session(self, session: Session) -> Session:
        row = self._insert(SESSIONS, session.model_dump(mode="json"))
        self._on_rollback(self._undo_insert(SESSIONS, id=session.id))
        logger.debug(f"Created session {session.id} for client {session.client_id}")
        return Session(**row)

    async def get_session_by_token(self, token: str) -> Session | None:
        rows = self._select(SESSIONS, token=token)
        return Session(**rows[0]) if rows else None

    async def mark_session_used(self, session_id: UUID, used_at: datetime) -> bool:
        result = self._execute(
            self.client.table(SESSIONS)
            .update({"used_at": used_at.isoformat()})
            .eq("id", str(session_id))
            .is_("used_at", "null")
        )
        return len(result.data) > 0

    async def delete_live_sessions(
        self, profile_id: UUID, client_id: str, now: datetime
    ) -> int:
        result = self._execute(
            self.client.table(SESSIONS)
            .delete()
            .eq("profile_id", str(profile_id))
            .eq("client_id", client_id)
            .gt("expires_at", now.isoformat())
        )
        self._on_rollback(self._undo_restore(SESSIONS, result.data, "id"))
        return len(result.data)

    async def delete_expired_sessions(self, now: datetime) -> int:
        result = self._execute(
            self.client.table(SESSIONS).delete().lte("expires_at", now.isoformat())
        )
        return len(result.data)

    async def list_sessions(self, profile_id: UUID) -> list[Session]:
        result = self._execute(
            self.client.table(SESSIONS)
            .select("*")
            .eq("profile_id", str(profile_id))
            .order("issued_at", desc=True)
        )
        return [Session(**row) for row in result.data]

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def insert_audit_entry(self, entry: AuditLogEntry) -> None:
        self._insert(AUDIT, entry.model_dump(mode="json"))

    async def list_audit_entries(
        self, user_id: UUID, limit: int = 50
    ) -> list[AuditLogEntry]:
        result = self._execute(
            self.client.table(AUDIT)
            .select("*")
            .eq("target_user_id", str(user_id))
            .order("accessed_at", desc=True)
            .limit(limit)
        )
        return [AuditLogEntry(**row) for row in result.data]

    # -------------------------------------------------------------------------
    # Health Check
    # -------------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """Check database connectivity and return health status.

        Returns:
            Dict with:
                - healthy: bool - whether the database is reachable
                - latency_ms: float - query latency in milliseconds
                - error: str | None - error message if unhealthy
        """
        start = time.perf_counter()
        try:
            self.client.table(SESSIONS).select("id").limit(1).execute()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "healthy": True,
                "latency_ms": round(latency_ms, 2),
                "error": None,
            }
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.error(f"Database health check failed: {e}")

            return {
                "healthy": False,
                "latency_ms": round(latency_ms, 2),
                "error": str(e),
            }
