"""Liveness and readiness probes.

/health answers "is the process alive" and reports each backing store;
it stays 200 when a dependency is degraded so the orchestrator does not
restart the container over a partial outage.

/ready answers "should traffic come here".  The database is critical
when configured: without it no attempt can be read or written, so the
instance reports 503 until it is reachable again.  Redis only carries
result notifications and never blocks readiness.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response

from app.db import engine as db_engine
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if db_engine.engine is None:
        return "not_configured"
    try:
        await db_engine.check_database()
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
