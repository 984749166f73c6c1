"""Tests for the Supabase DatabaseClient."""

from datetime import datetime, UTC
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from postgrest.exceptions import APIError

from truename.db.client import DatabaseClient
from truename.exceptions import DependencyError, UniqueViolationError
from truename.models.consent import ConsentStatus
from truename.models.name import Name, NameKind


def _chain(data=None, error: Exception | None = None) -> MagicMock:
    """A query builder whose filters return itself."""
    chain = MagicMock()
    for method in ("select", "insert", "update", "upsert", "delete", "eq", "in_",
                   "is_", "gt", "lte", "or_", "order", "limit"):
        getattr(chain, method).return_value = chain
    if error is not None:
        chain.execute.side_effect = error
    else:
        chain.execute.return_value.data = data or []
    return chain


def _client(chain: MagicMock) -> DatabaseClient:
    with patch.object(DatabaseClient, "__init__", lambda self: None):
        db = DatabaseClient()
    db.client = MagicMock()
    db.client.table.return_value = chain
    return db


def _name_row(owner_id) -> dict:
    return Name(owner_id=owner_id, text="JJ", kind=NameKind.NICKNAME).model_dump(mode="json")


class TestQueries:
    """Rows are mapped to models and written to the right tables."""

    @pytest.mark.asyncio
    async def test_insert_name(self):
        owner = uuid4()
        row = _name_row(owner)
        chain = _chain([row])
        db = _client(chain)

        name = await db.insert_name(Name(**row))

        assert name.text == "JJ"
        assert name.owner_id == owner
        db.client.table.assert_called_with("names")
        chain.insert.assert_called_once_with(row)

    @pytest.mark.asyncio
    async def test_get_name_missing(self):
        db = _client(_chain([]))

        assert await db.get_name(uuid4(), uuid4()) is None

    @pytest.mark.asyncio
    async def test_transition_consent_lost_race(self):
        chain = _chain([])
        db = _client(chain)

        result = await db.transition_consent(
            uuid4(), ConsentStatus.PENDING, {"status": ConsentStatus.GRANTED}
        )

        assert result is None
        chain.update.assert_called_once_with({"status": "GRANTED"})

    @pytest.mark.asyncio
    async def test_mark_session_used_only_when_unset(self):
        chain = _chain([])
        db = _client(chain)

        assert await db.mark_session_used(uuid4(), datetime.now(UTC)) is False
        chain.is_.assert_called_once_with("used_at", "null")


class TestErrorMapping:
    """Driver errors become domain errors."""

    @pytest.mark.asyncio
    async def test_unique_violation(self):
        error = APIError(
            {"message": "duplicate key", "code": "23505", "hint": None, "details": None}
        )
        db = _client(_chain(error=error))

        with pytest.raises(UniqueViolationError):
            await db.insert_name(Name(owner_id=uuid4(), text="JJ", kind=NameKind.LEGAL))

    @pytest.mark.asyncio
    async def test_other_api_error(self):
        error = APIError(
            {"message": "permission denied", "code": "42501", "hint": None, "details": None}
        )
        db = _client(_chain(error=error))

        with pytest.raises(DependencyError):
            await db.list_names(uuid4())

    @pytest.mark.asyncio
    async def test_connection_error(self):
        db = _client(_chain(error=ConnectionError("refused")))

        with pytest.raises(DependencyError):
            await db.get_session_by_token("tnp_" + "0" * 32)


class TestRollback:
    """Inserts inside a failed transaction are deleted again."""

    @pytest.mark.asyncio
    async def test_insert_is_compensated(self):
        owner = uuid4()
        row = _name_row(owner)
        chain = _chain([row])
        db = _client(chain)

        with pytest.raises(RuntimeError):
            async with db.transaction():
                await db.insert_name(Name(**row))
                raise RuntimeError("boom")

        chain.delete.assert_called_once()
        chain.eq.assert_any_call("id", row["id"])


class TestHealthCheck:
    """Health check reports connectivity."""

    @pytest.mark.asyncio
    async def test_healthy(self):
        db = _client(_chain([]))

        health = await db.health_check()

        assert health["healthy"] is True
        assert health["error"] is None

    @pytest.mark.asyncio
    async def test_unhealthy(self):
        db = _client(_chain(error=ConnectionError("refused")))

        health = await db.health_check()

        assert health["healthy"] is False
        assert "refused" in health["error"]
