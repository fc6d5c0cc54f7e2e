"""
Upstream AISstream connector.

- Owns the single WebSocket to AISstream and its state machine.
- Connects on demand, subscribes once per connection, reconnects after a fixed delay
  while viewers remain, and tears down when asked.
- Raw frames go to ``on_message``; state changes go to ``on_status``.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import websockets

logger = logging.getLogger("shiptracker.feed")


class FeedSubscriptionError(Exception):
    """Raised when AISstream returns a subscription/authentication error."""


class InvalidFeedTransition(RuntimeError):
    """Raised on a state change the connector state machine does not allow."""


class FeedState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


_TRANSITIONS: dict[FeedState, frozenset[FeedState]] = {
    FeedState.IDLE: frozenset({FeedState.CONNECTING}),
    FeedState.CONNECTING: frozenset({FeedState.OPEN, FeedState.IDLE, FeedState.CLOSING}),
    FeedState.OPEN: frozenset({FeedState.IDLE, FeedState.CLOSING}),
    FeedState.CLOSING: frozenset({FeedState.IDLE}),
}


def next_state(current: FeedState, target: FeedState) -> FeedState:
    if target not in _TRANSITIONS[current]:
        raise InvalidFeedTransition(f"{current.value} -> {target.value}")
    return target


def open_feed(url: str) -> Any:
    """Default connection factory: an async context manager yielding the socket."""
    return websockets.connect(url, ping_interval=20, ping_timeout=30)


def _extract_stream_error(raw: str | bytes) -> str | None:
    """
    AISstream reports server-side failures as {"error": "..."}
    (e.g. invalid API key or filter type).
    """
    # full parse only for frames that can carry an error key
    marker = b"rror\"" if isinstance(raw, bytes) else "rror\""
    if marker not in raw:
        return None
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(msg, dict):
        return None
    err = msg.get("error") or msg.get("Error")
    if isinstance(err, str):
        err = err.strip()
        return err or None
    return None


@dataclass
class _PendingReconnect:
    token: int
    handle: asyncio.TimerHandle


class FeedConnector:
    def __init__(
        self,
        url: str,
        api_key: str,
        subscription: dict[str, Any],
        *,
        on_message: Callable[[str | bytes], None],
        on_status: Callable[..., None],
        has_demand: Callable[[], bool],
        reconnect_delay: float = 5.0,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self._url = url
        self._api_key = api_key
        self._subscription = dict(subscription)
        self._on_message = on_message
        self._on_status = on_status
        self._has_demand = has_demand
        self._reconnect_delay = reconnect_delay
        self._connect = connect or open_feed

        self._state = FeedState.IDLE
        self._ws: Any = None
        self._task: Optional[asyncio.Task[None]] = None
        self._closing: Optional[asyncio.Task[None]] = None
        # bumped on every connect/disconnect; a task whose attempt is stale must not touch state
        self._attempt = 0
        self._reconnect: Optional[_PendingReconnect] = None
        self._reconnect_tokens = 0

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is FeedState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect is not None

    def _transition(self, target: FeedState) -> None:
        previous = self._state
        self._state = next_state(previous, target)
        logger.debug("feed state %s -> %s", previous.value, target.value)

    def ensure_connected(self) -> bool:
        """Start connecting unless already open or connecting. Returns True if an attempt started."""
        if self._state in (FeedState.OPEN, FeedState.CONNECTING):
            return False
        self._cancel_reconnect()
        self._transition(FeedState.CONNECTING)
        self._attempt += 1
        previous, self._closing = self._closing, None
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._attempt, previous), name="ais-feed"
        )
        logger.info("Connecting to AISstream (%s)", self._url)
        return True

    def disconnect(self) -> bool:
        """Cancel any pending reconnect and close the connection. Returns True if a connection was closed."""
        self._cancel_reconnect()
        if self._state in (FeedState.IDLE, FeedState.CLOSING):
            return False
        self._transition(FeedState.CLOSING)
        self._attempt += 1
        task, self._task = self._task, None
        self._ws = None
        if task is not None and not task.done():
            task.cancel()
            self._closing = task
        self._transition(FeedState.IDLE)
        logger.info("Disconnected from AISstream")
        return True

    async def wait_closed(self) -> None:
        """Wait for a cancelled connection to finish closing."""
        task, self._closing = self._closing, None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def update_subscription(self, preferences: dict[str, Any]) -> bool:
        """Send viewer preferences upstream with the server-held key. Ignored unless open."""
        ws = self._ws
        if self._state is not FeedState.OPEN or ws is None:
            logger.debug("subscription update ignored (feed %s)", self._state.value)
            return False
        payload = {**preferences, "APIKey": self._api_key}
        try:
            await ws.send(json.dumps(payload))
        except Exception as exc:
            logger.warning("subscription update failed: %s", exc)
            return False
        logger.info("Updated subscription sent to AISstream")
        return True

    def _subscription_message(self) -> str:
        return json.dumps({"APIKey": self._api_key, **self._subscription})

    async def _run(self, attempt: int, previous: Optional[asyncio.Task[None]]) -> None:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        error: Optional[BaseException] = None
        try:
            async with self._connect(self._url) as ws:
                if attempt != self._attempt:
                    return
                self._ws = ws
                await ws.send(self._subscription_message())
                self._transition(FeedState.OPEN)
                logger.info("AISstream connected, subscription sent")
                self._on_status("connected")
                async for raw in ws:
                    stream_error = _extract_stream_error(raw)
                    if stream_error:
                        raise FeedSubscriptionError(stream_error)
                    try:
                        self._on_message(raw)
                    except Exception:
                        logger.exception("feed message handler failed; message dropped")
        except asyncio.CancelledError:
            raise
        except FeedSubscriptionError as exc:
            error = exc
            logger.error(
                "AISstream subscription/authentication failed: %s. "
                "Check AIS_API_KEY and FilterMessageTypes.",
                exc,
            )
        except Exception as exc:
            error = exc
            logger.warning("AISstream connection error: %s", exc)
        if attempt == self._attempt:
            self._connection_lost(error)

    def _connection_lost(self, error: Optional[BaseException]) -> None:
        self._ws = None
        self._task = None
        self._transition(FeedState.IDLE)
        if error is not None:
            self._on_status("error", str(error) or type(error).__name__)
        else:
            logger.info("AISstream closed the connection")
        self._on_status("disconnected")
        if self._has_demand():
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        self._reconnect_tokens += 1
        token = self._reconnect_tokens
        handle = asyncio.get_running_loop().call_later(
            self._reconnect_delay, self._reconnect_fired, token
        )
        self._reconnect = _PendingReconnect(token=token, handle=handle)
        logger.info("Reconnecting to AISstream in %.1fs", self._reconnect_delay)

    def _reconnect_fired(self, token: int) -> None:
        pending = self._reconnect
        if pending is None or pending.token != token:
            logger.debug("stale reconnect timer %d ignored", token)
            return
        self._reconnect = None
        if not self._has_demand():
            return
        self.ensure_connected()

    def _cancel_reconnect(self) -> None:
        pending, self._reconnect = self._reconnect, None
        if pending is not None:
            pending.handle.cancel()
