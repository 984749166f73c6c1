"""FastAPI application entry point for TrueName."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from truename import __version__
from truename.api.auth import get_db
from truename.api.routes import (
    get_audit_log,
    get_resolution_engine,
    get_session_issuer,
    router,
)
from truename.config import get_settings
from truename.manager.audit_log import AuditLog

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting TrueName Server v{__version__}")
    settings = get_settings()
    logger.info(f"Debug mode: {settings.debug}, store backend: {settings.store_backend}")

    db = get_db()
    store = await db.health_check()
    if not store["healthy"]:
        logger.error(f"Store unhealthy at startup: {store['error']}")
    else:
        # Drop sessions that expired while the server was down
        issuer = get_session_issuer(db, get_resolution_engine(db, get_audit_log(db)))
        try:
            await issuer.cleanup_expired_sessions()
        except Exception as e:
            logger.error(f"Expired session cleanup failed: {e}")

    yield

    # Shutdown
    await AuditLog.drain()
    logger.info("Shutting down TrueName Server")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="TrueName",
        description="Context-aware name resolution and OAuth-style name disclosure",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "truename.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
