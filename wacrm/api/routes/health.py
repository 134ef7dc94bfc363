"""Health check endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter

from wacrm.api.dependencies import ConnectionsDep, StorageDep
from wacrm.core.clock import utcnow
from wacrm.core.config import settings

logger = structlog.get_logger()

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
@router.get("/")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "environment": settings.app_env,
    }


@router.get("/ready")
async def readiness_check(storage: StorageDep, connections: ConnectionsDep) -> dict[str, Any]:
    """Readiness check - verifies the storage backend answers."""
    checks = {"storage": False}

    try:
        checks["storage"] = await storage.health_check()
    except Exception as e:
        logger.warning("Storage health check failed", error=str(e))

    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "timestamp": utcnow().isoformat(),
        "checks": checks,
        "realtime_connections": connections.get_total_connections(),
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check - basic endpoint for kubernetes liveness checks."""
    return {"status": "alive"}
