"""
MMSI range filter applied to upstream messages before fan-out.

The identifier is read from MetaData.MMSI first and Message.PositionReport.UserID
as a fallback. Messages without a usable identifier always pass.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class MMSIRange:
    min: int
    max: int

    def contains(self, mmsi: int) -> bool:
        return self.min <= mmsi <= self.max


def _coerce(value: Any) -> Optional[int]:
    # bool is an int subclass; AIS never sends it for an identifier
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if number.is_integer() else None
    return None


def extract_mmsi(message: Any) -> Optional[int]:
    """Numeric MMSI of an AISstream message, or None when it cannot be read."""
    if not isinstance(message, dict):
        return None
    meta = message.get("MetaData")
    if isinstance(meta, dict):
        mmsi = _coerce(meta.get("MMSI"))
        if mmsi is not None:
            return mmsi
    payload = message.get("Message")
    if isinstance(payload, dict):
        report = payload.get("PositionReport")
        if isinstance(report, dict):
            return _coerce(report.get("UserID"))
    return None


def mmsi_in_range(mmsi: Optional[int], rng: Optional[MMSIRange]) -> bool:
    if rng is None or mmsi is None:
        return True
    return rng.contains(mmsi)


def passes(message: Any, rng: Optional[MMSIRange]) -> bool:
    """True when the message should be forwarded under ``rng``."""
    return mmsi_in_range(extract_mmsi(message), rng)
