"""Viewer envelopes, inbound viewer messages and HTTP response schemas."""
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

StatusMessage = Literal["connected_to_proxy", "connected", "disconnected", "error"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── server -> viewer ─────────────────────────────────────────


class StatusEnvelope(BaseModel):
    type: Literal["status"] = "status"
    message: StatusMessage
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class DataEnvelope(BaseModel):
    type: Literal["ais_data"] = "ais_data"
    data: dict[str, Any]


def status_envelope(message: str, error: Optional[str] = None) -> str:
    return StatusEnvelope(message=message, error=error).model_dump_json(exclude_none=True)


def data_envelope(message: dict[str, Any]) -> str:
    return DataEnvelope(data=message).model_dump_json()


# ── viewer -> server ─────────────────────────────────────────


class SubscriptionPreferences(BaseModel):
    """AISstream subscription fields a viewer may set; unknown AISstream keys pass through."""
    model_config = ConfigDict(extra="allow")

    BoundingBoxes: Optional[list[list[list[float]]]] = None
    FilterMessageTypes: Optional[list[str]] = None


class ViewerMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    subscription: Optional[SubscriptionPreferences] = None


# ── HTTP ─────────────────────────────────────────────────────


class FeedStatsOut(BaseModel):
    received: int = 0
    filtered: int = 0
    forwarded: int = 0
    malformed: int = 0
    dropped: int = 0


class FilterOut(BaseModel):
    enabled: bool = False
    mmsi_min: Optional[int] = None
    mmsi_max: Optional[int] = None


class StatusOut(BaseModel):
    server: str = "running"
    connected_clients: int = 0
    upstream_connected: bool = False
    upstream_state: str = "idle"
    reconnect_pending: bool = False
    stats: FeedStatsOut = FeedStatsOut()
    filter: FilterOut = FilterOut()
    vessels: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)


class VesselOut(BaseModel):
    """Latest known state of one vessel, from forwarded position reports."""
    mmsi: int
    name: Optional[str] = None
    call_sign: Optional[str] = None
    destination: Optional[str] = None
    latitude: float
    longitude: float
    speed: Optional[float] = None
    course: Optional[float] = None
    heading: Optional[int] = None
    time_utc: Optional[str] = None
    last_seen: datetime
