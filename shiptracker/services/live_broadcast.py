"""
In-memory live broadcaster for viewer WebSocket fanout.

- Owns the active viewer sessions, keyed by session id.
- Drives the upstream connector: connect on first viewer, disconnect after the last.
- broadcast(payload) offers one serialized payload to every open session without blocking.
"""
import logging
from typing import Dict, Optional, Protocol

from shiptracker.feed.connector import FeedState
from shiptracker.schemas import status_envelope

logger = logging.getLogger("shiptracker.broadcast")


class Session(Protocol):
    session_id: str

    @property
    def is_open(self) -> bool: ...

    def offer(self, payload: str) -> bool: ...

    async def close(self, code: int = 1000) -> None: ...


class Connector(Protocol):
    @property
    def state(self) -> FeedState: ...

    def ensure_connected(self) -> bool: ...

    def disconnect(self) -> bool: ...


class LiveBroadcaster:
    """In-process fanout: broadcast(payload) sends to all registered viewer sessions."""

    def __init__(self, connector: Connector):
        self._connector = connector
        self._sessions: Dict[str, Session] = {}
        self._dropped = 0

    def register_session(self, session: Session) -> None:
        self._sessions[session.session_id] = session
        session.offer(status_envelope("connected_to_proxy"))
        logger.info("Viewer %s connected (%d total)", session.session_id[:8], len(self._sessions))
        if len(self._sessions) == 1:
            self._connector.ensure_connected()
        elif self._connector.state is FeedState.OPEN:
            session.offer(status_envelope("connected"))

    def unregister_session(self, session: Session) -> bool:
        """Remove session; False if it was already removed."""
        if self._sessions.pop(session.session_id, None) is None:
            return False
        logger.info(
            "Viewer %s disconnected (%d remaining)", session.session_id[:8], len(self._sessions)
        )
        if not self._sessions:
            logger.info("No viewers remaining, disconnecting from AISstream")
            self._connector.disconnect()
        return True

    def broadcast(self, payload: str) -> int:
        """Offer payload to every open session. Returns how many accepted it."""
        delivered = 0
        for session in list(self._sessions.values()):
            if not session.is_open:
                continue
            if session.offer(payload):
                delivered += 1
            else:
                self._dropped += 1
        return delivered

    def broadcast_status(self, message: str, error: Optional[str] = None) -> int:
        return self.broadcast(status_envelope(message, error))

    async def close_all(self, code: int = 1001) -> None:
        """Close and unregister every viewer session (shutdown)."""
        for session in list(self._sessions.values()):
            await session.close(code=code)
            self.unregister_session(session)

    def has_sessions(self) -> bool:
        return bool(self._sessions)

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def session_count(self) -> int:
        return len(self._sessions)
