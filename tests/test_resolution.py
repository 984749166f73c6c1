"""Tests for the name resolution engine."""

import asyncio
from datetime import datetime, timedelta, UTC
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from truename.exceptions import DependencyError
from truename.manager.audit_log import AuditLog
from truename.manager.resolution_engine import ResolutionEngine
from truename.models.audit import AuditAction
from truename.models.consent import Consent, ConsentStatus
from truename.models.context import Context, ContextCreate, ContextNameAssignment
from truename.models.name import Name, NameCreate, NameKind
from truename.models.resolution import FallbackReason, ResolutionTier


async def _seed_jj(names, catalog, owner_id) -> dict:
    """Legal / preferred / alias names bound to Work / Gaming / OSS."""
    legal = await names.add_name(
        owner_id, NameCreate(text="Jędrzej Lewandowski", kind=NameKind.LEGAL)
    )
    preferred = await names.add_name(
        owner_id, NameCreate(text="JJ", kind=NameKind.PREFERRED, is_preferred=True)
    )
    alias = await names.add_name(owner_id, NameCreate(text="J.L.", kind=NameKind.ALIAS))

    work = await catalog.create_context(owner_id, ContextCreate(name="Work"))
    gaming = await catalog.create_context(owner_id, ContextCreate(name="Gaming"))
    oss = await catalog.create_context(owner_id, ContextCreate(name="OSS"))

    await catalog.assign_name_to_context(owner_id, work.id, legal.id)
    await catalog.assign_name_to_context(owner_id, gaming.id, preferred.id)
    await catalog.assign_name_to_context(owner_id, oss.id, alias.id)

    return {
        "legal": legal,
        "preferred": preferred,
        "alias": alias,
        "work": work,
        "gaming": gaming,
        "oss": oss,
    }


# ---------------------------------------------------------------------------
# Context and preferred tiers
# ---------------------------------------------------------------------------


class TestContextResolution:
    """Resolution driven by a context hint."""

    @pytest.mark.asyncio
    async def test_scenario_names_per_context(self, resolver, names, catalog, user_id):
        await _seed_jj(names, catalog, user_id)

        work = await resolver.resolve(user_id, context_hint="Work")
        gaming = await resolver.resolve(user_id, context_hint="Gaming")
        oss = await resolver.resolve(user_id, context_hint="OSS")
        none = await resolver.resolve(user_id)

        assert work.name_text == "Jędrzej Lewandowski"
        assert work.tier == ResolutionTier.CONTEXT
        assert gaming.name_text == "JJ"
        assert oss.name_text == "J.L."
        assert none.name_text == "JJ"
        assert none.tier == ResolutionTier.PREFERRED_FALLBACK
        assert none.fallback_reason == FallbackReason.NO_SPECIFIC_REQUEST

    @pytest.mark.asyncio
    async def test_unknown_context_matches_no_context(
        self, resolver, names, catalog, user_id
    ):
        await _seed_jj(names, catalog, user_id)

        unknown = await resolver.resolve(user_id, context_hint="Nonexistent Context")
        plain = await resolver.resolve(user_id)

        assert unknown.name_text == plain.name_text
        assert unknown.tier == plain.tier == ResolutionTier.PREFERRED_FALLBACK
        assert unknown.fallback_reason == FallbackReason.NO_CONTEXT_ASSIGNMENT

    @pytest.mark.asyncio
    async def test_context_name_match_is_case_sensitive(
        self, resolver, names, catalog, user_id
    ):
        await _seed_jj(names, catalog, user_id)

        result = await resolver.resolve(user_id, context_hint="work")

        assert result.name_text == "JJ"
        assert result.tier == ResolutionTier.PREFERRED_FALLBACK

    @pytest.mark.asyncio
    async def test_context_hint_by_id(self, resolver, names, catalog, user_id):
        seeded = await _seed_jj(names, catalog, user_id)

        by_uuid = await resolver.resolve(user_id, context_hint=seeded["oss"].id)
        by_text = await resolver.resolve(user_id, context_hint=str(seeded["oss"].id))

        assert by_uuid.name_text == by_text.name_text == "J.L."
        assert by_uuid.context_name == "OSS"

    @pytest.mark.asyncio
    async def test_other_users_context_is_ignored(
        self, resolver, names, catalog, user_id, other_user_id
    ):
        await _seed_jj(names, catalog, user_id)
        await names.add_name(other_user_id, NameCreate(text="Sam", kind=NameKind.LEGAL))
        theirs = await catalog.create_context(other_user_id, ContextCreate(name="Work"))

        result = await resolver.resolve(user_id, context_hint=theirs.id)

        assert result.name_text == "JJ"
        assert result.tier == ResolutionTier.PREFERRED_FALLBACK

    @pytest.mark.asyncio
    async def test_context_without_assignment_falls_back(
        self, resolver, names, catalog, user_id
    ):
        await _seed_jj(names, catalog, user_id)
        await catalog.create_context(user_id, ContextCreate(name="Empty"))

        result = await resolver.resolve(user_id, context_hint="Empty")

        assert result.name_text == "JJ"
        assert result.fallback_reason == FallbackReason.NO_CONTEXT_ASSIGNMENT


# ---------------------------------------------------------------------------
# Consent tier
# ---------------------------------------------------------------------------


class TestConsentResolution:
    """Resolution driven by a granted consent."""

    @pytest.mark.asyncio
    async def test_consent_beats_context_hint(
        self, resolver, consents, names, catalog, user_id, other_user_id
    ):
        seeded = await _seed_jj(names, catalog, user_id)
        await consents.request_consent(user_id, other_user_id, seeded["work"].id)
        await consents.grant_consent(user_id, other_user_id)

        result = await resolver.resolve(user_id, other_user_id, "Gaming")

        assert result.name_text == "Jędrzej Lewandowski"
        assert result.tier == ResolutionTier.CONSENT
        assert result.context_name == "Work"

    @pytest.mark.asyncio
    async def test_grant_then_revoke_scenario(
        self, resolver, consents, names, catalog, user_id, other_user_id
    ):
        seeded = await _seed_jj(names, catalog, user_id)

        await consents.request_consent(user_id, other_user_id, seeded["oss"].id)
        pending = await resolver.resolve(user_id, other_user_id, "anything")
        assert pending.name_text == "JJ"
        assert pending.fallback_reason == FallbackReason.NO_CONSENT_AND_NO_CONTEXT

        await consents.grant_consent(user_id, other_user_id)
        granted = await resolver.resolve(user_id, other_user_id, "anything")
        assert granted.name_text == "J.L."

        await consents.revoke_consent(user_id, other_user_id)
        revoked = await resolver.resolve(user_id, other_user_id, "anything")
        assert revoked.name_text == "JJ"
        assert revoked.tier == ResolutionTier.PREFERRED_FALLBACK

    @pytest.mark.asyncio
    async def test_requester_without_consent(
        self, resolver, names, catalog, user_id, other_user_id
    ):
        await _seed_jj(names, catalog, user_id)

        result = await resolver.resolve(user_id, other_user_id)

        assert result.name_text == "JJ"
        assert result.fallback_reason == FallbackReason.NO_ACTIVE_CONSENT

    @pytest.mark.asyncio
    async def test_expired_grant_is_ignored(
        self, db, resolver, names, catalog, user_id, other_user_id
    ):
        seeded = await _seed_jj(names, catalog, user_id)
        now = datetime.now(UTC)
        await db.insert_consent(
            Consent(
                granter_id=user_id,
                requester_id=other_user_id,
                context_id=seeded["work"].id,
                status=ConsentStatus.GRANTED,
                granted_at=now - timedelta(days=2),
                expires_at=now - timedelta(days=1),
            )
        )

        result = await resolver.resolve(user_id, other_user_id)

        assert result.name_text == "JJ"
        assert result.tier == ResolutionTier.PREFERRED_FALLBACK

    @pytest.mark.asyncio
    async def test_consent_context_without_name_skips_context_tier(
        self, resolver, consents, names, catalog, user_id, other_user_id
    ):
        await _seed_jj(names, catalog, user_id)
        empty = await catalog.create_context(user_id, ContextCreate(name="Empty"))
        await consents.request_consent(user_id, other_user_id, empty.id)
        await consents.grant_consent(user_id, other_user_id)

        result = await resolver.resolve(user_id, other_user_id, "Work")

        assert result.name_text == "JJ"
        assert result.tier == ResolutionTier.PREFERRED_FALLBACK
        assert result.fallback_reason == FallbackReason.NO_CONSENT_AND_NO_CONTEXT

    @pytest.mark.asyncio
    async def test_consent_context_without_name_no_hint(
        self, resolver, consents, names, catalog, user_id, other_user_id
    ):
        await _seed_jj(names, catalog, user_id)
        empty = await catalog.create_context(user_id, ContextCreate(name="Empty"))
        await consents.request_consent(user_id, other_user_id, empty.id)
        await consents.grant_consent(user_id, other_user_id)

        result = await resolver.resolve(user_id, other_user_id)

        assert result.name_text == "JJ"
        assert result.fallback_reason == FallbackReason.NO_ACTIVE_CONSENT

    @pytest.mark.asyncio
    async def test_multiple_grants_picks_most_recent(self, caplog):
        owner, requester = uuid4(), uuid4()
        now = datetime.now(UTC)
        older_ctx = Context(owner_id=owner, name="Old")
        newer_ctx = Context(owner_id=owner, name="New")
        older_name = Name(owner_id=owner, text="Older", kind=NameKind.LEGAL)
        newer_name = Name(owner_id=owner, text="Newer", kind=NameKind.NICKNAME)
        by_context = {older_ctx.id: older_name, newer_ctx.id: newer_name}

        mock_db = MagicMock()
        mock_db.list_consents_for_pair = AsyncMock(
            return_value=[
                Consent(
                    granter_id=owner,
                    requester_id=requester,
                    context_id=older_ctx.id,
                    status=ConsentStatus.GRANTED,
                    granted_at=now - timedelta(hours=1),
                ),
                Consent(
                    granter_id=owner,
                    requester_id=requester,
                    context_id=newer_ctx.id,
                    status=ConsentStatus.GRANTED,
                    granted_at=now,
                ),
            ]
        )
        mock_db.get_context = AsyncMock(
            side_effect=lambda cid, _owner: older_ctx if cid == older_ctx.id else newer_ctx
        )
        mock_db.get_context_name_assignment = AsyncMock(
            side_effect=lambda cid: ContextNameAssignment(
                context_id=cid, name_id=by_context[cid].id, owner_id=owner
            )
        )
        mock_db.get_name = AsyncMock(
            side_effect=lambda nid, _owner: newer_name if nid == newer_name.id else older_name
        )
        mock_db.insert_audit_entry = AsyncMock()
        engine = ResolutionEngine(mock_db, AuditLog(mock_db))

        with caplog.at_level("WARNING"):
            result = await engine.resolve(owner, requester)

        assert result.name_text == "Newer"
        assert result.context_name == "New"
        assert "GRANTED consents" in caplog.text


# ---------------------------------------------------------------------------
# Sentinel and failure handling
# ---------------------------------------------------------------------------


class TestFallbacks:
    """Resolution never raises."""

    @pytest.mark.asyncio
    async def test_user_without_names_gets_sentinel(self, resolver, user_id):
        result = await resolver.resolve(user_id, context_hint="Work")

        assert result.name_text == "Anonymous User"
        assert result.is_anonymous
        assert result.tier == ResolutionTier.PREFERRED_FALLBACK

    @pytest.mark.asyncio
    async def test_store_failure_returns_error_fallback(self, user_id):
        mock_db = MagicMock()
        mock_db.get_preferred_name = AsyncMock(side_effect=DependencyError("down"))
        mock_db.insert_audit_entry = AsyncMock()
        engine = ResolutionEngine(mock_db, AuditLog(mock_db))

        result = await engine.resolve(user_id)
        await AuditLog.drain()

        assert result.name_text == "Anonymous User"
        assert result.tier == ResolutionTier.ERROR_FALLBACK
        assert result.error == "down"
        mock_db.insert_audit_entry.assert_called_once()

    @pytest.mark.asyncio
    async def test_audit_failure_is_swallowed(self, db, resolver, names, catalog, user_id):
        await _seed_jj(names, catalog, user_id)
        db.insert_audit_entry = AsyncMock(side_effect=RuntimeError("audit down"))

        result = await resolver.resolve(user_id, context_hint="Work")
        await AuditLog.drain()

        assert result.name_text == "Jędrzej Lewandowski"
        db.insert_audit_entry.assert_awaited_once()


class TestAuditTrail:
    """Every resolution leaves one disclosure entry."""

    @pytest.mark.asyncio
    async def test_disclosure_is_recorded(
        self, resolver, audit, names, catalog, user_id, other_user_id
    ):
        seeded = await _seed_jj(names, catalog, user_id)

        await resolver.resolve(user_id, other_user_id, "Work")
        await audit.drain()
        entries = await audit.list_entries(user_id)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.NAME_DISCLOSED
        assert entry.disclosed_name == "Jędrzej Lewandowski"
        assert entry.requester_id == other_user_id
        assert entry.context_id == seeded["work"].id
        assert entry.details["tier"] == "context_specific"
        assert entry.details["context_name"] == "Work"

    @pytest.mark.asyncio
    async def test_slow_audit_write_does_not_delay_resolution(
        self, db, resolver, names, catalog, user_id
    ):
        await _seed_jj(names, catalog, user_id)
        release = asyncio.Event()
        written = []

        async def slow_insert(entry):
            await release.wait()
            written.append(entry)

        db.insert_audit_entry = slow_insert

        result = await asyncio.wait_for(
            resolver.resolve(user_id, context_hint="Work"), timeout=1
        )

        assert result.name_text == "Jędrzej Lewandowski"
        assert written == []

        release.set()
        await AuditLog.drain()

        assert len(written) == 1
        assert written[0].disclosed_name == "Jędrzej Lewandowski"
