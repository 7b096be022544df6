"""GET /health: liveness plus database and Redis probes.

"ok" needs both backends healthy. Without Redis the service still serves every
escrow operation (mediation state in-process, no change stream), so a missing
or broken Redis reports "degraded" rather than failing the probe.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from trade_escrow.infrastructure.database.engine import _get_engine
from trade_escrow.infrastructure.redis_client import get_redis_or_none
from trade_escrow.logging_config import get_logger
from trade_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

HEALTHY = "healthy"


async def _probe_database() -> str:
    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


async def _probe_redis() -> str:
    redis = get_redis_or_none()
    if redis is None:
        return "not configured"
    try:
        await redis.ping()
    except Exception as exc:
        logger.error("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check() -> HealthResponse:
    database = await _probe_database()
    redis = await _probe_redis()
    return HealthResponse(
        status="ok" if database == redis == HEALTHY else "degraded",
        database=database,
        redis=redis,
    )
