"""
Proxy service: the single owner of feed connector, broadcaster, filter and stats.

Upstream frames flow: count -> parse -> MMSI filter -> vessel cache -> ais_data envelope
-> broadcast. Connector state changes become status envelopes.
"""
import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from pydantic import ValidationError

from shiptracker.core.config import Settings
from shiptracker.feed.connector import FeedConnector, FeedState
from shiptracker.schemas import ViewerMessage, data_envelope
from shiptracker.services.filters import extract_mmsi, mmsi_in_range
from shiptracker.services.live_broadcast import LiveBroadcaster
from shiptracker.services.redis_client import close_redis, redis_enabled, write_stats
from shiptracker.services.sessions import ViewerSession
from shiptracker.services.vessel_cache import VesselCache

logger = logging.getLogger("shiptracker.proxy")


@dataclass
class FeedStats:
    received: int = 0
    filtered: int = 0
    forwarded: int = 0
    malformed: int = 0


class ProxyService:
    def __init__(self, settings: Settings, connect: Optional[Callable[[str], Any]] = None):
        self.settings = settings
        self.filter_range = settings.mmsi_range()
        self.stats = FeedStats()
        self.vessels = VesselCache(ttl_sec=settings.VESSEL_TTL_SEC)
        self.connector = FeedConnector(
            settings.AISSTREAM_WS_URL,
            settings.AIS_API_KEY.strip(),
            settings.subscription(),
            on_message=self.handle_feed_message,
            on_status=self.handle_feed_status,
            has_demand=self._has_demand,
            reconnect_delay=settings.RECONNECT_DELAY_SEC,
            connect=connect,
        )
        self.broadcaster = LiveBroadcaster(self.connector)
        self._tasks: set[asyncio.Task[Any]] = set()

    def _has_demand(self) -> bool:
        return self.broadcaster.has_sessions()

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start(self) -> None:
        if not self.settings.AIS_API_KEY.strip():
            logger.warning(
                "AIS_API_KEY is empty; AISstream will reject the subscription. "
                "Get a key at https://aisstream.io/apikeys"
            )
        if self.filter_range is not None:
            logger.info(
                "MMSI filter enabled: %d-%d", self.filter_range.min, self.filter_range.max
            )
        if redis_enabled():
            self._spawn(self._stats_loop(), "stats-mirror")
        logger.info("Proxy started; AISstream connects when the first viewer joins")

    async def stop(self) -> None:
        await self.broadcaster.close_all(code=1001)
        self.connector.disconnect()
        await self.connector.wait_closed()
        for t in list(self._tasks):
            t.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if redis_enabled():
            await close_redis()
        logger.info("Proxy stopped")

    async def _stats_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.STATS_PUBLISH_INTERVAL_SEC)
            try:
                await write_stats(self.snapshot())
            except Exception as exc:
                logger.debug("stats write error: %s", exc)

    # ── upstream ─────────────────────────────────────────────

    def handle_feed_message(self, raw: str | bytes) -> None:
        self.stats.received += 1
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError) as exc:
            self.stats.malformed += 1
            logger.warning("Dropping malformed AISstream payload: %s", exc)
            return
        if not isinstance(msg, dict):
            self.stats.malformed += 1
            logger.warning("Dropping non-object AISstream payload (%s)", type(msg).__name__)
            return

        mmsi = extract_mmsi(msg)
        if not mmsi_in_range(mmsi, self.filter_range):
            self.stats.filtered += 1
            return
        if mmsi is not None:
            self.stats.forwarded += 1

        self.vessels.update(msg)
        self.broadcaster.broadcast(data_envelope(msg))

    def handle_feed_status(self, message: str, error: Optional[str] = None) -> None:
        self.broadcaster.broadcast_status(message, error)

    # ── viewers ──────────────────────────────────────────────

    def begin_session(self, session: ViewerSession) -> None:
        self.broadcaster.register_session(session)

    def end_session(self, session: ViewerSession) -> bool:
        session.mark_closed()
        return self.broadcaster.unregister_session(session)

    async def handle_viewer_message(self, session: ViewerSession, raw: str) -> None:
        try:
            msg = ViewerMessage.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Dropping malformed message from viewer %s: %s",
                session.session_id[:8],
                exc.errors(include_url=False)[:1],
            )
            return
        if msg.type == "subscribe" and msg.subscription is not None:
            await self.connector.update_subscription(
                msg.subscription.model_dump(exclude_none=True)
            )
        else:
            logger.debug("Ignoring viewer message type %r", msg.type)

    # ── status ───────────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        rng = self.filter_range
        return {
            "server": "running",
            "connected_clients": self.broadcaster.session_count,
            "upstream_connected": self.connector.state is FeedState.OPEN,
            "upstream_state": self.connector.state.value,
            "reconnect_pending": self.connector.reconnect_pending,
            "stats": {**asdict(self.stats), "dropped": self.broadcaster.dropped},
            "filter": {
                "enabled": rng is not None,
                "mmsi_min": rng.min if rng else None,
                "mmsi_max": rng.max if rng else None,
            },
            "vessels": len(self.vessels),
        }
