"""Persistence layer."""

from truename.config import get_settings
from truename.db.client import DatabaseClient
from truename.db.memory import MemoryDatabase
from truename.db.repository import Repository, UnitOfWorkMixin


def create_repository() -> Repository:
    """Build the store selected by ``STORE_BACKEND``."""
    if get_settings().store_backend == "memory":
        return MemoryDatabase()
    return DatabaseClient()


__all__ = [
    "create_repository",
    "DatabaseClient",
    "MemoryDatabase",
    "Repository",
    "UnitOfWorkMixin",
]
