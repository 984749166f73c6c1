"""Domain services."""

from truename.manager.audit_log import AuditLog
from truename.manager.client_registry import ClientRegistry, generate_client_id
from truename.manager.consent_manager import ConsentManager
from truename.manager.context_catalog import ContextCatalog
from truename.manager.context_registry import ContextRegistry
from truename.manager.name_registry import NameRegistry
from truename.manager.resolution_engine import ResolutionEngine
from truename.manager.session_issuer import (
    SessionIssuer,
    build_redirect_url,
    generate_session_token,
)

__all__ = [
    "AuditLog",
    "build_redirect_url",
    "ClientRegistry",
    "ConsentManager",
    "ContextCatalog",
    "ContextRegistry",
    "generate_client_id",
    "generate_session_token",
    "NameRegistry",
    "ResolutionEngine",
    "SessionIssuer",
]
