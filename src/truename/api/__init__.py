"""API routes and authentication."""

from truename.api.routes import router

__all__ = ["router"]
