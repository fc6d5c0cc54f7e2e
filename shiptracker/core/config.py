from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shiptracker.services.filters import MMSIRange

MMSI_FLOOR = 0
MMSI_CEILING = 999_999_999


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── AISstream ─────────────────────────────────────────────
    AIS_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("AIS_API_KEY", "AISSTREAM_API_KEY"),
    )
    AISSTREAM_WS_URL: str = "wss://stream.aisstream.io/v0/stream"

    # [[[lat_min, lon_min], [lat_max, lon_max]], ...]; default is global coverage
    BOUNDING_BOXES: list[list[list[float]]] = [[[-90.0, -180.0], [90.0, 180.0]]]
    FILTER_MESSAGE_TYPES: list[str] = ["PositionReport"]

    # ── MMSI range filter (both unset = no filtering) ──
    MMSI_MIN: Optional[int] = None
    MMSI_MAX: Optional[int] = None

    # ── Proxy ─────────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    RECONNECT_DELAY_SEC: float = 5.0
    SESSION_OUTBOX_SIZE: int = 1000
    VESSEL_TTL_SEC: int = 900

    # ── API ───────────────────────────────────────────────────
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # ── Redis stats mirror (empty URL = disabled) ──
    REDIS_URL: str = ""
    REDIS_STATS_KEY: str = "shiptracker:stats"
    STATS_PUBLISH_INTERVAL_SEC: float = 5.0
    STATS_TTL_SEC: int = 60

    @model_validator(mode="after")
    def _check_mmsi_bounds(self) -> "Settings":
        if (
            self.MMSI_MIN is not None
            and self.MMSI_MAX is not None
            and self.MMSI_MIN > self.MMSI_MAX
        ):
            raise ValueError(
                f"MMSI_MIN ({self.MMSI_MIN}) must not exceed MMSI_MAX ({self.MMSI_MAX})"
            )
        return self

    def bounding_boxes(self) -> list:
        """AISstream format: [[[lat_min, lon_min], [lat_max, lon_max]], ...] (corners normalized)."""
        boxes = []
        for (lat_a, lon_a), (lat_b, lon_b) in self.BOUNDING_BOXES:
            boxes.append(
                [
                    [min(lat_a, lat_b), min(lon_a, lon_b)],
                    [max(lat_a, lat_b), max(lon_a, lon_b)],
                ]
            )
        return boxes

    def mmsi_range(self) -> Optional[MMSIRange]:
        """Configured filter range; a single missing bound is left open."""
        if self.MMSI_MIN is None and self.MMSI_MAX is None:
            return None
        return MMSIRange(
            min=MMSI_FLOOR if self.MMSI_MIN is None else self.MMSI_MIN,
            max=MMSI_CEILING if self.MMSI_MAX is None else self.MMSI_MAX,
        )

    def subscription(self) -> dict:
        """Initial subscription body, without the API key."""
        return {
            "BoundingBoxes": self.bounding_boxes(),
            "FilterMessageTypes": list(self.FILTER_MESSAGE_TYPES),
        }


settings = Settings()
