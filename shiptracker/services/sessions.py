"""Downstream viewer session: one WebSocket, a bounded outbox and its writer task."""
import asyncio
import logging
import uuid
from typing import Any

logger = logging.getLogger("shiptracker.session")


class ViewerSession:
    """
    Messages are offered without blocking; a writer task drains the outbox to the socket
    in order. A full outbox means the viewer is not currently writable and the message is
    dropped for that viewer only.
    """

    def __init__(self, websocket: Any, outbox_size: int = 1000):
        self.session_id = uuid.uuid4().hex
        self._websocket = websocket
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=outbox_size)
        self._open = True
        self._dropped = 0

    def __repr__(self) -> str:
        return f"<ViewerSession {self.session_id[:8]} open={self._open}>"

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def offer(self, payload: str) -> bool:
        """Queue payload for sending. False if the session is closed or its outbox is full."""
        if not self._open:
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            self._dropped += 1
            return False
        return True

    def mark_closed(self) -> None:
        self._open = False

    async def run_writer(self) -> None:
        """Send queued payloads until the session closes or the transport fails."""
        try:
            while self._open:
                payload = await self._outbox.get()
                await self._websocket.send_text(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("viewer %s send failed: %s", self.session_id[:8], exc)
        finally:
            self._open = False

    async def close(self, code: int = 1000) -> None:
        self._open = False
        try:
            await self._websocket.close(code=code)
        except Exception as exc:
            # transport may already be gone
            logger.debug("viewer %s close: %s", self.session_id[:8], exc)
