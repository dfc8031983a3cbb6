"""FastAPI application for the reference sync server.

This module creates and configures the FastAPI application serving the
upload/bootstrap contract used by the fieldsync client.

Usage:
    uvicorn fieldsync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from fieldsync.server.api.router import router as api_router
from fieldsync.server.database import Database

# Configuration from environment variables with defaults
DB_PATH = Path(os.environ.get("FIELDSYNC_DB_PATH", "fieldsync-server.db"))

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Send fieldsync logs to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger = logging.getLogger("fieldsync")
    root_logger.setLevel(level)
    root_logger.addHandler(handler)


def create_app(db: Database) -> FastAPI:
    """Create FastAPI application with a custom database.

    This is primarily used for testing with isolated databases.

    Args:
        db: Database instance.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info("fieldsync server starting (database: %s)", getattr(db, "_db_path", "?"))
        yield
        logger.info("fieldsync server shutting down")

    application = FastAPI(
        title="fieldsync Server",
        description="Reference sync endpoint for field inspection devices",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging()
    return create_app(db=Database(DB_PATH))
