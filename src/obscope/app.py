"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from obscope.api.admin import router as admin_router
from obscope.api.health import router as health_router
from obscope.api.jobs import router as jobs_router
from obscope.crypto import get_or_create_master_key
from obscope.db import close_db, init_db
import obscope.db as _db_module

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown: open the DB and load the master key."""
    await init_db()

    app.state.master_key = get_or_create_master_key(_db_module.DATA_DIR)

    logger.info("obscope started with data dir %s", _db_module.DATA_DIR)

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(title="obscope", version="0.1.0", lifespan=lifespan)

    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(admin_router)

    return app
