"""FastAPI application entrypoint and router wiring for the kanban service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from kanban_crm.api.boards import router as boards_router
from kanban_crm.api.cards import router as cards_router
from kanban_crm.core.config import settings
from kanban_crm.core.error_handling import install_error_handling
from kanban_crm.core.logging import configure_logging, get_logger
from kanban_crm.db.session import async_engine, init_db
from kanban_crm.schemas.health import HealthStatusResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

configure_logging()
logger = get_logger(__name__)
OPENAPI_TAGS = [
    {
        "name": "health",
        "description": "Service liveness/readiness probes used by infrastructure checks.",
    },
    {
        "name": "boards",
        "description": "Organization board snapshot and column management endpoints.",
    },
    {
        "name": "cards",
        "description": (
            "Card CRUD, assignee synchronisation, collaborative approval and "
            "gated column moves."
        ),
    },
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
    title="Kanban CRM API",
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

_PROBE_RESPONSES = {
    status.HTTP_200_OK: {
        "description": "Probe succeeded.",
        "content": {"application/json": {"example": {"ok": True}}},
    },
    status.HTTP_503_SERVICE_UNAVAILABLE: {
        "description": "Database is unreachable.",
        "content": {"application/json": {"example": {"ok": False}}},
    },
}


def _liveness() -> HealthStatusResponse:
    return HealthStatusResponse(ok=True)


for _path, _summary in (("/health", "Health Check"), ("/healthz", "Health Alias Check")):
    app.add_api_route(
        _path,
        _liveness,
        methods=["GET"],
        tags=["health"],
        response_model=HealthStatusResponse,
        summary=_summary,
        responses=_PROBE_RESPONSES,
    )


@app.get(
    "/readyz",
    tags=["health"],
    response_model=HealthStatusResponse,
    summary="Readiness Check",
    responses=_PROBE_RESPONSES,
)
async def readyz(response: Response) -> HealthStatusResponse:
    """Report ready only when the database answers a trivial query."""
    try:
        async with async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("app.readiness.db_unavailable", exc_info=True)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthStatusResponse(ok=False)
    return HealthStatusResponse(ok=True)


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(boards_router)
api_v1.include_router(cards_router)
app.include_router(api_v1)

logger.debug("app.routes.registered count=%s", len(app.routes))
