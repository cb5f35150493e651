"""
TaskFlow API - Main Application
===============================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import newrelic.agent

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskflow.config import settings
from taskflow.core.errors import setup_exception_handlers
from taskflow.db.session import close_db, init_db
from taskflow.services.cache import close_redis, init_redis

logger = logging.getLogger(__name__)


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that adds request attributes to the current
    New Relic transaction.

    Raw ASGI keeps the route handler in the same task, so child spans
    (Redis, database) stay attached to the transaction.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            txn = newrelic.agent.current_transaction()
            if txn:
                route = scope.get("route")
                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route.path if route else scope.get("path", "unknown")),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round((time.perf_counter() - start) * 1000, 2)),
                    ("environment", settings.ENVIRONMENT),
                ])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Opens the database and Redis connections. Startup continues when
    either is unreachable so the health check still answers.
    """
    logger.info("Starting TaskFlow API...")

    if settings.auth_disabled:
        logger.warning(
            "Authentication is DISABLED (DEV_AUTH_DISABLED=true); "
            "all requests use the development user"
        )

    try:
        await init_db()
    except Exception as e:
        logger.warning("Database connection failed: %s", e)

    try:
        await init_redis()
    except Exception as e:
        logger.warning("Redis connection failed: %s", e)

    if not settings.push_configured:
        logger.info("VAPID keys not set; server push reminders are disabled")

    yield

    logger.info("Shutting down TaskFlow API...")
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="TaskFlow API",
    description="""
## TaskFlow Backend

Personal dated tasks with due-time reminders.

### Features
- **Tasks**: CRUD for the signed-in account
- **Push**: Web Push subscription registry and cron-driven reminders
- **Account data**: JSON export and import

### Rate Limits
- Task writes: 120 requests/minute
- Push registry: 20 requests/minute
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Resource not found"},
        422: {"description": "Validation error"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal server error"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(NewRelicTransactionMiddleware)

setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Also used by clients as their connectivity probe.
    """
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "TaskFlow API",
        "version": "1.0.0",
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

from taskflow.api.v1 import cron, push, tasks, user

app.include_router(tasks.router, prefix="/api/v1/tasks", tags=["Tasks"])
app.include_router(push.router, prefix="/api/v1/push", tags=["Push"])
app.include_router(cron.router, prefix="/api/v1/cron", tags=["Cron"])
app.include_router(user.router, prefix="/api/v1/user", tags=["User"])
