from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from railfleet.apps.api.openapi import UPSTREAM_ERROR_RESPONSES
from railfleet.core.config import get_settings
from railfleet.core.errors import UpstreamUnavailableError
from railfleet.persistence.db import check_connection, pool_stats


API_VERSION = "2.1.0"

router = APIRouter(tags=["health"])


class BannerFeatures(BaseModel):
    completion: bool
    search: bool
    rag: bool


class BannerResponse(BaseModel):
    message: str
    status: str
    features: BannerFeatures
    timestamp: str


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str


class DbHealthResponse(BaseModel):
    database: str
    pool: dict[str, int | None]
    timestamp: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=BannerResponse)
async def banner(request: Request) -> BannerResponse:
    gateway = request.app.state.chat_gateway
    return BannerResponse(
        message=f"{get_settings().app_name} fleet API v{API_VERSION}",
        status="healthy",
        features=BannerFeatures(
            completion=gateway.completion_enabled,
            search=gateway.search_enabled,
            rag=gateway.completion_enabled and gateway.search_enabled,
        ),
        timestamp=_now(),
    )


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    # Liveness only; database reachability lives under /api/db/health.
    return HealthResponse(status="healthy", version=API_VERSION, timestamp=_now())


@router.get("/api/db/health", response_model=DbHealthResponse, responses=UPSTREAM_ERROR_RESPONSES)
async def db_health() -> DbHealthResponse:
    try:
        connected = await check_connection()
    except (SQLAlchemyError, OSError) as exc:
        raise UpstreamUnavailableError(
            "Database connection failed", details={"database": "disconnected"}
        ) from exc
    if not connected:
        raise UpstreamUnavailableError("Database connection failed", details={"database": "disconnected"})
    return DbHealthResponse(database="connected", pool=pool_stats(), timestamp=_now())
