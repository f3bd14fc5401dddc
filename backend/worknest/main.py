"""FastAPI application entrypoint and router wiring for the board service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from worknest.api.auth import router as auth_router
from worknest.api.notifications import router as notifications_router
from worknest.api.projects import router as projects_router
from worknest.api.realtime import router as realtime_router
from worknest.api.tasks import router as tasks_router
from worknest.api.webhooks import router as webhooks_router
from worknest.core.config import settings
from worknest.core.error_handling import install_error_handling
from worknest.core.logging import configure_logging, get_logger
from worknest.db.session import init_db
from worknest.schemas.health import HealthStatusResponse
from worknest.services.file_storage import UPLOADS_URL_PREFIX

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

configure_logging()
logger = get_logger(__name__)
OPENAPI_TAGS = [
    {"name": "auth", "description": "Authentication bootstrap for resolving caller identity."},
    {"name": "health", "description": "Service liveness/readiness probes."},
    {"name": "projects", "description": "Workspaces, projects, members, activity and event streams."},
    {"name": "tasks", "description": "Task CRUD, comments, attachments and dependencies."},
    {"name": "notifications", "description": "In-app notifications for the current user."},
    {"name": "webhooks", "description": "Outbound webhook subscriptions per project."},
    {"name": "realtime", "description": "WebSocket channel for live board events."},
]


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Initialize application resources before serving requests."""
    logger.info(
        "app.lifecycle.starting environment=%s db_auto_migrate=%s",
        settings.environment,
        settings.db_auto_migrate,
    )
    await init_db()
    logger.info("app.lifecycle.started")
    try:
        yield
    finally:
        logger.info("app.lifecycle.stopped")


app = FastAPI(
    title="WorkNest API",
    version="0.1.0",
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
)

origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("app.cors.enabled origins_count=%s", len(origins))
else:
    logger.info("app.cors.disabled")

install_error_handling(app)


@app.get(
    "/health",
    tags=["health"],
    response_model=HealthStatusResponse,
    responses={status.HTTP_200_OK: {"description": "Service is alive."}},
)
def health() -> HealthStatusResponse:
    """Lightweight liveness probe endpoint."""
    return HealthStatusResponse(ok=True)


@app.get("/healthz", tags=["health"], response_model=HealthStatusResponse)
def healthz() -> HealthStatusResponse:
    """Alias liveness probe endpoint for platform compatibility."""
    return HealthStatusResponse(ok=True)


@app.get("/readyz", tags=["health"], response_model=HealthStatusResponse)
def readyz() -> HealthStatusResponse:
    """Readiness probe endpoint for service orchestration checks."""
    return HealthStatusResponse(ok=True)


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(auth_router)
api_v1.include_router(projects_router)
api_v1.include_router(tasks_router)
api_v1.include_router(notifications_router)
api_v1.include_router(webhooks_router)
api_v1.include_router(realtime_router)
app.include_router(api_v1)

app.mount(
    UPLOADS_URL_PREFIX,
    StaticFiles(directory=settings.upload_dir, check_dir=False),
    name="uploads",
)
logger.debug("app.routes.registered count=%s", len(app.routes))
