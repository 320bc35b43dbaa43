"""Health checks for the payroll run engine."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from payrun_engine.api.dependencies import DbSession
from payrun_engine.config import get_settings
from payrun_engine.models import PayrollRun

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Engine and database status."""

    status: str
    timestamp: datetime
    database: str
    engine_version: str
    calculation_lock_mode: str


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession) -> HealthResponse:
    """Report engine version and whether the database answers."""
    settings = get_settings()
    try:
        await db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        database = "unhealthy"

    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=database,
        engine_version=settings.engine_version,
        calculation_lock_mode=settings.calculation_lock_mode,
    )


@router.get("/ready")
async def readiness_check(db: DbSession, response: Response) -> dict[str, str]:
    """Ready once the run tables exist and can be read."""
    try:
        await db.scalar(select(func.count()).select_from(PayrollRun))
    except SQLAlchemyError:
        logger.warning("Readiness check failed: payroll_run not readable", exc_info=True)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not-ready"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
