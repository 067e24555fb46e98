"""
FastAPI Kurator API Server

Provides REST API endpoints for contact curation, interactions, the
watchlist, dashboards and administration.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import logging
from typing import Optional

from fastapi import FastAPI

from api.dependencies import get_app_config
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from api.models import HealthResponse
from api.routers import ALL_ROUTERS
from config_manager import ConfigManager, ConfigurationError
from database.connection import DatabaseSettings, close_db, get_db_provider, init_db
from database.seed import seed_database
from services.password_hasher import PasswordHasher

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))


def configure_logging(config: ConfigManager) -> None:
    """Root logging from the logging section of the config."""
    handlers = []
    if config.logging.console:
        handlers.append(logging.StreamHandler())
    if config.logging.file:
        handlers.append(logging.FileHandler(config.logging.file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, config.logging.level),
        format=config.logging.format,
        handlers=handlers or None,
    )


def database_settings(config: ConfigManager) -> DatabaseSettings:
    """Environment settings; the config file url applies when DATABASE_URL is unset."""
    settings = DatabaseSettings.from_env()
    if not settings.url and config.database.url:
        settings.url = config.database.url
    return settings


def bootstrap(config: ConfigManager, settings: Optional[DatabaseSettings] = None) -> dict:
    """Create tables and seed the admin and reference catalogue."""
    provider = init_db(echo=config.database.echo, settings=settings or database_settings(config))
    provider.create_tables()

    hasher = PasswordHasher(rounds=config.security.bcrypt_rounds)
    with provider.session_scope() as session:
        result = seed_database(
            session,
            hasher.hash_password,
            admin_login=config.seed.admin_login,
            admin_password=config.seed.admin_password,
            with_references=config.seed.seed_references,
        )
    return result


# Create FastAPI application
app = FastAPI(
    title="Kurator API",
    description="Contact curation, interaction tracking and risk watchlist",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)

for router in ALL_ROUTERS:
    app.include_router(router)


@app.on_event("startup")
async def startup():
    """Load configuration, prepare the database and seed defaults."""
    logger.info("Starting Kurator API...")

    try:
        config = get_app_config()
        configure_logging(config)
        logger.info(f"Configuration loaded from {config.config_path}")

        result = bootstrap(config)
        logger.info(
            f"Database ready: admin_created={result['admin_created']} "
            f"references_created={result['references_created']}"
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Kurator API...")
    close_db()


@app.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database status",
)
def health_check():
    """Return health status. Always returns HTTP 200."""
    try:
        connected = get_db_provider().health_check()
    except Exception as e:
        logger.error(f"Health check failed: {type(e).__name__}")
        connected = False

    return HealthResponse(
        status="healthy" if connected else "degraded",
        database="connected" if connected else "unavailable",
        version=API_VERSION,
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
