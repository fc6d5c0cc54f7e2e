"""Latest known state per vessel, built from forwarded position reports."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from shiptracker.services.filters import extract_mmsi


def _text(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    value = raw.strip()
    return value or None


def _valid_position(lat: Any, lon: Any) -> bool:
    if isinstance(lat, bool) or isinstance(lon, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False
    return abs(lat) <= 90 and abs(lon) <= 180


def _number(raw: Any) -> Optional[float]:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if raw != raw or raw in (float("inf"), float("-inf")):
        return None
    return float(raw)


def _heading(raw: Any) -> Optional[int]:
    value = _number(raw)
    # 511 means "not available"
    if value is None or not 0 <= value < 360:
        return None
    return int(value)


class VesselCache:
    def __init__(self, ttl_sec: float = 900.0, prune_every_sec: float = 30.0):
        self._ttl = ttl_sec
        self._prune_every = prune_every_sec
        self._last_prune = time.monotonic()
        self._vessels: Dict[int, dict] = {}
        self._seen_at: Dict[int, float] = {}

    def update(self, msg: dict[str, Any]) -> Optional[dict]:
        """Record a PositionReport; returns the stored row or None if the message has no usable position."""
        payload = msg.get("Message")
        report = payload.get("PositionReport") if isinstance(payload, dict) else None
        if not isinstance(report, dict):
            return None
        mmsi = extract_mmsi(msg)
        if mmsi is None:
            return None
        lat = report.get("Latitude")
        lon = report.get("Longitude")
        if not _valid_position(lat, lon):
            return None
        meta = msg.get("MetaData")
        if not isinstance(meta, dict):
            meta = {}
        previous = self._vessels.get(mmsi, {})
        row = {
            "mmsi": mmsi,
            # position reports carry name/call sign only in MetaData, and not always
            "name": _text(meta.get("ShipName")) or previous.get("name"),
            "call_sign": _text(meta.get("CallSign")) or previous.get("call_sign"),
            "destination": _text(meta.get("Destination")) or previous.get("destination"),
            "latitude": float(lat),
            "longitude": float(lon),
            "speed": _number(report.get("Sog")),
            "course": _number(report.get("Cog")),
            "heading": _heading(report.get("TrueHeading")),
            "time_utc": _text(meta.get("time_utc")),
            "last_seen": datetime.now(timezone.utc),
        }
        now = time.monotonic()
        self._vessels[mmsi] = row
        self._seen_at[mmsi] = now
        if now - self._last_prune >= self._prune_every:
            self.prune()
        return row

    def prune(self) -> int:
        now = time.monotonic()
        self._last_prune = now
        cutoff = now - self._ttl
        stale = [mmsi for mmsi, seen in self._seen_at.items() if seen < cutoff]
        for mmsi in stale:
            del self._seen_at[mmsi]
            del self._vessels[mmsi]
        return len(stale)

    def get(self, mmsi: int) -> Optional[dict]:
        self.prune()
        return self._vessels.get(mmsi)

    def search(self, query: str = "", limit: int = 50) -> list[dict]:
        """Match name or call sign substring, or MMSI prefix; empty query lists the most recent."""
        self.prune()
        needle = query.strip().lower()
        rows = sorted(self._vessels.values(), key=lambda r: r["last_seen"], reverse=True)
        if needle:
            rows = [
                r
                for r in rows
                if str(r["mmsi"]).startswith(needle)
                or needle in (r["name"] or "").lower()
                or needle in (r["call_sign"] or "").lower()
            ]
        return rows[:limit]

    def __len__(self) -> int:
        self.prune()
        return len(self._vessels)
