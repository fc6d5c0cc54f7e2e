"""Health endpoints: summary, liveness and readiness."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from shiptracker.services.ingest_state import get_proxy
from shiptracker.services.redis_client import get_redis, redis_enabled

router = APIRouter(tags=["health"])
logger = logging.getLogger("shiptracker.health")


@router.get("/health")
async def health():
    proxy = get_proxy()
    return {
        "status": "ok",
        "clients": proxy.broadcaster.session_count,
        "upstream_connected": proxy.connector.is_open,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness():
    """Liveness: process is running. No dependencies checked."""
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness():
    """Readiness: Redis is reachable when the stats mirror is enabled."""
    if not redis_enabled():
        return {"status": "ok"}
    try:
        r = await get_redis()
        await r.ping()
    except Exception as e:
        logger.warning("Redis readiness check failed: %s", e)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "errors": ["redis"]},
        )
    return {"status": "ok"}
