"""
FastAPI Production Application

Main entry point for the Order Settlement API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
import structlog

from settlement.config import get_settings
from settlement.config.logging import configure_logging
from settlement.database.connection import close_database, get_engine, get_session_factory, init_database
from settlement.database.store import SettlementStore
from settlement.environment import build_environment
from settlement.serving.api.main import create_api_app

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Configure logging first
    configure_logging()
    settings = get_settings()

    logger.info("Starting Order Settlement API", environment=settings.app_env)

    await init_database()
    store = SettlementStore(get_session_factory(), engine=get_engine())
    app.state.environment = build_environment(settings, store)

    yield

    logger.info("Shutting down...")
    await app.state.environment.aclose()
    await close_database()


app = create_api_app(lifespan=lifespan)


@app.get("/api/v1/info")
async def api_info():
    """API information endpoint."""
    settings = get_settings()
    return {
        "name": "Order Settlement API",
        "version": settings.version,
        "environment": settings.app_env,
        "documentation": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
