"""
Proxy API: status snapshot, stats mirror, known vessels (in-memory).

- GET /status          : viewers, upstream state, counters, filter config
- GET /status/mirror   : last snapshot written to Redis (when REDIS_URL is set)
- GET /vessels         : search currently-known vessels
- GET /vessels/{mmsi}  : latest state of one vessel
"""
from fastapi import APIRouter, HTTPException, Query

from shiptracker.schemas import StatusOut, VesselOut
from shiptracker.services.ingest_state import get_proxy
from shiptracker.services.redis_client import read_stats, redis_enabled

router = APIRouter()


@router.get("/status", response_model=StatusOut)
async def status():
    """Read-only snapshot of the proxy and its counters."""
    return StatusOut(**get_proxy().snapshot())


@router.get("/status/mirror", summary="Last status snapshot mirrored to Redis")
async def status_mirror():
    if not redis_enabled():
        raise HTTPException(status_code=404, detail="Stats mirror disabled")
    data = await read_stats()
    if data is None:
        raise HTTPException(status_code=404, detail="No snapshot yet")
    return data


@router.get("/vessels", response_model=list[VesselOut], summary="Search known vessels")
async def vessels(
    q: str = Query("", description="Name or call sign substring, or MMSI prefix"),
    limit: int = Query(50, ge=1, le=500),
):
    return [VesselOut.model_validate(row) for row in get_proxy().vessels.search(q, limit)]


@router.get("/vessels/{mmsi}", response_model=VesselOut, summary="Vessel details by MMSI")
async def vessel_by_mmsi(mmsi: int):
    vessel = get_proxy().vessels.get(mmsi)
    if vessel is None:
        raise HTTPException(status_code=404, detail="Vessel not found")
    return VesselOut.model_validate(vessel)
