"""Global test configuration for TrueName."""

import os
from uuid import UUID, uuid4

import pytest

from truename.db.memory import MemoryDatabase
from truename.manager.audit_log import AuditLog
from truename.manager.consent_manager import ConsentManager
from truename.manager.context_catalog import ContextCatalog
from truename.manager.context_registry import ContextRegistry
from truename.manager.name_registry import NameRegistry
from truename.manager.resolution_engine import ResolutionEngine
from truename.manager.session_issuer import SessionIssuer


@pytest.fixture(autouse=True, scope="session")
def _set_test_env_vars():
    """Set dummy environment variables for Settings validation.

    This ensures tests don't require a real .env file or exported env vars.
    Only sets values that aren't already present, so real env vars take
    precedence (useful for integration tests).
    """
    defaults = {
        "SUPABASE_URL": "https://test.supabase.co",
        "SUPABASE_KEY": "test-supabase-key",
        "STORE_BACKEND": "memory",
    }
    originals = {}
    for key, value in defaults.items():
        if key not in os.environ:
            os.environ[key] = value
            originals[key] = None
        else:
            originals[key] = os.environ[key]

    # Clear the lru_cache on get_settings so it picks up the new env vars
    from truename.config import get_settings
    get_settings.cache_clear()

    yield

    # Restore original env state
    for key, original in originals.items():
        if original is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original
    get_settings.cache_clear()


@pytest.fixture
def db() -> MemoryDatabase:
    return MemoryDatabase()


@pytest.fixture
def audit(db) -> AuditLog:
    return AuditLog(db)


@pytest.fixture
def resolver(db, audit) -> ResolutionEngine:
    return ResolutionEngine(db, audit)


@pytest.fixture
def consents(db, audit) -> ConsentManager:
    return ConsentManager(db, audit)


@pytest.fixture
def names(db) -> NameRegistry:
    return NameRegistry(db)


@pytest.fixture
def catalog(db) -> ContextCatalog:
    return ContextCatalog(db)


@pytest.fixture
def registry(db) -> ContextRegistry:
    return ContextRegistry(db)


@pytest.fixture
def issuer(db, registry, resolver) -> SessionIssuer:
    return SessionIssuer(db, registry, resolver)


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_user_id() -> UUID:
    return uuid4()
