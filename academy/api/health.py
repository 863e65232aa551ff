"""Health and readiness endpoints.

  /health (liveness): is the process alive?  Always 200; the body says
    whether a dependency is degraded.  A 503 here would make the
    orchestrator restart a container that may only be waiting on the DB.

  /ready (readiness): can this instance take traffic?  The ledger is the
    one critical dependency; Redis only carries the rendering hand-off
    and has an in-memory fallback, so it never fails readiness.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError

from academy.db.engine import engine, ping_database
from academy.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _redis_status() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except (RedisError, OSError):
        logger.warning("Redis ping failed")
        return "degraded"
    return "ok"


async def _database_status() -> str:
    if engine is None:
        return "in_memory"
    return "ok" if await ping_database() else "degraded"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _database_status(),
        "redis": await _redis_status(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """200 when the ledger is reachable (or in-memory), else 503."""
    if await _database_status() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
