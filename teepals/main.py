"""TeePals Rounds Service - Main Application.

FastAPI application exposing the round lifecycle and membership coordinator.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from teepals import __version__
from teepals.infrastructure.database.session import close_db, init_db
from teepals.infrastructure.events import drain_pending_events
from teepals.rounds.allocator import CapacityAllocator
from teepals.rounds.api import router as rounds_router
from teepals.rounds.collaborators import (
    AllowAllProfileGate,
    InMemorySocialGraph,
    PlatformEventPublisher,
)
from teepals.rounds.config import get_round_settings
from teepals.rounds.repository import MemoryRoundStore
from teepals.shared.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)

logger = get_logger(__name__)


# ===========================================
# APPLICATION METADATA
# ===========================================

APP_TITLE = "TeePals Rounds Service"
APP_DESCRIPTION = """
Golfers host **rounds** (tee times with a capacity) and others request, join,
get invited and leave. Seats are allocated one round at a time so a round is
never overbooked, and canceled or completed rounds are frozen.
"""
APP_VERSION = __version__
API_PREFIX = "/api/v1"

TAGS_METADATA = [
    {
        "name": "health",
        "description": "Health check and status endpoints",
    },
    {
        "name": "rounds",
        "description": "Round lifecycle, membership and roster",
    },
]


# ===========================================
# LIFECYCLE MANAGEMENT
# ===========================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    settings = get_round_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info("app_starting", title=APP_TITLE, version=APP_VERSION, store=settings.store_backend)

    if settings.store_backend == "postgres":
        await init_db(create_tables=True)

    yield

    logger.info("app_shutting_down", title=APP_TITLE)
    await drain_pending_events()
    if settings.store_backend == "postgres":
        await close_db()
    logger.info("app_shutdown_complete", title=APP_TITLE)


# ===========================================
# APPLICATION FACTORY
# ===========================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_round_settings()
    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )

    # One allocator per process: every request for a round shares its lock.
    app.state.allocator = CapacityAllocator(settings.lock_timeout_seconds)
    app.state.round_store = MemoryRoundStore()
    # Nobody is friends with anybody until a real graph is installed.
    app.state.social_graph = InMemorySocialGraph()
    app.state.profile_gate = AllowAllProfileGate()
    app.state.publisher = PlatformEventPublisher()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_request_context(request_id, user_id=request.headers.get("X-User-Id"))
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc) if app.debug else "An unexpected error occurred",
            },
        )

    app.include_router(rounds_router, prefix=API_PREFIX)

    register_root_endpoints(app)

    return app


def register_root_endpoints(app: FastAPI) -> None:
    """Register root-level endpoints."""

    @app.get("/", tags=["health"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": APP_TITLE,
            "version": APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "api_prefix": API_PREFIX,
        }

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "version": APP_VERSION,
            "timestamp": time.time(),
            "active_round_locks": app.state.allocator.active_rounds(),
        }

    @app.get("/health/live", tags=["health"])
    async def liveness_check() -> dict[str, Any]:
        """Liveness probe for Kubernetes."""
        return {
            "alive": True,
            "timestamp": time.time(),
        }


app = create_app()
