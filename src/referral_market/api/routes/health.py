from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.core.config import Settings, get_settings
from referral_market.db.dependencies import get_db_session
from referral_market.observability import add_breadcrumb

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


class DependencyStatus(BaseModel):
    """Health status for a downstream dependency."""

    status: Literal["ok", "error"]
    error: str | None = None

    model_config = ConfigDict(extra="ignore", validate_assignment=True)


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["ok", "error"]
    service: str
    version: str
    timestamp: datetime
    environment: str
    metrics_enabled: bool = False
    metrics_endpoint: str | None = None
    error_tracking_enabled: bool = False
    expiration_scheduler_enabled: bool = False

    model_config = ConfigDict(extra="ignore", validate_assignment=True)


class DetailedHealthResponse(HealthResponse):
    """Health payload including the database check."""

    database: DependencyStatus | None = None


HealthPayload = dict[str, object]


def _build_health_response(settings: Settings) -> HealthPayload:
    metrics_endpoint = (
        settings.prometheus.metrics_path if settings.prometheus.enabled else None
    )
    return {
        "status": "ok",
        "service": settings.project_name,
        "version": settings.project_version,
        "timestamp": datetime.now(UTC),
        "environment": settings.environment.value,
        "metrics_enabled": settings.prometheus.enabled,
        "metrics_endpoint": metrics_endpoint,
        "error_tracking_enabled": settings.sentry.enabled,
        "expiration_scheduler_enabled": settings.expiration.enabled,
    }


@router.get("", summary="Service health check", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings)) -> HealthPayload:
    """Return a lightweight health payload for readiness probes."""

    add_breadcrumb(category="health", message="Health check requested")
    payload = _build_health_response(settings)
    logger.debug("health_status", **{k: v for k, v in payload.items() if v is not None})
    return payload


@router.get(
    "/detailed",
    summary="Detailed health check with dependencies",
    response_model=DetailedHealthResponse,
)
async def detailed_health(
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_db_session),
) -> HealthPayload:
    add_breadcrumb(category="health", message="Detailed health check requested")

    payload = _build_health_response(settings)
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        payload["status"] = "error"
        payload["database"] = {"status": "error", "error": str(exc)}
        logger.error("database_health_check_failed", error=str(exc))
    else:
        payload["database"] = {"status": "ok", "error": None}
    return payload
