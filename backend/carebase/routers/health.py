"""Liveness and readiness probes."""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from carebase.config import settings
from carebase.database import engine
from carebase.utils.cache import get_redis

router = APIRouter(prefix="/health", tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _probe_database() -> str:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return "ok"


async def _probe_redis() -> str:
    redis_client = await get_redis()
    await redis_client.ping()
    return "ok"


@router.get("")
async def liveness():
    return {"status": "ok", "service": "CareBase", "environment": settings.environment, "timestamp": _now()}


@router.get("/ready")
async def readiness():
    """503 until the database (and Redis, when caching is on) answers."""
    probes = {"database": _probe_database}
    if settings.cache_enabled:
        probes["redis"] = _probe_redis

    checks = {"redis": "disabled"}
    for name, probe in probes.items():
        try:
            checks[name] = await probe()
        except Exception as exc:
            checks[name] = f"error: {str(exc)[:100]}"

    healthy = all(value in ("ok", "disabled") for value in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ready" if healthy else "unavailable", "checks": checks, "timestamp": _now()},
    )
