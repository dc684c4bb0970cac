"""
HighLevel Dashboard Backend - FastAPI Application

Provides:
- OAuth connection to a HighLevel location or agency
- Authenticated proxy to the HighLevel API
- Background contact sync into an in-memory snapshot
- Search, filter and sort over the synced leads
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ghl_dashboard import __version__
from ghl_dashboard.api.deps import reset_services
from ghl_dashboard.api.routes import appointments, health, leads, oauth, proxy
from ghl_dashboard.config import get_settings
from ghl_dashboard.db.client import close_db, init_db
from ghl_dashboard.kernel.http.errors import register_exception_handlers

# Map log level string to logging constant
_LOG_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _get_log_level() -> int:
    """Get numeric log level from settings."""
    level_str = get_settings().log_level.lower()
    return _LOG_LEVEL_MAP.get(level_str, logging.INFO)


# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
        if get_settings().log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown."""
    settings = get_settings()

    logger.info(
        "Starting HighLevel Dashboard Backend",
        version=__version__,
        environment=settings.environment,
        credential_store=settings.credential_store,
    )

    missing = settings.missing_oauth_env()
    if missing:
        logger.warning("HighLevel OAuth is not configured", missing_env=missing)

    if settings.credential_store == "postgres":
        await init_db()
        logger.info("PostgreSQL connection initialized")

    yield

    logger.info("Shutting down HighLevel Dashboard Backend")
    await reset_services()
    await close_db()


# Create FastAPI application
app = FastAPI(
    title="HighLevel Dashboard API",
    description="OAuth-brokered HighLevel access with a locally synced, searchable lead snapshot",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(oauth.router, prefix="/api/v1")
app.include_router(proxy.router, prefix="/api/v1")
app.include_router(leads.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "HighLevel Dashboard API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
