"""Viewer WebSocket endpoint: register, relay feed envelopes, forward subscription updates."""
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from shiptracker.core.config import settings
from shiptracker.services.ingest_state import get_proxy
from shiptracker.services.sessions import ViewerSession

router = APIRouter()
logger = logging.getLogger("shiptracker.session")


@router.websocket("/")
@router.websocket("/ws")
async def viewer_socket(websocket: WebSocket):
    await websocket.accept()
    proxy = get_proxy()
    session = ViewerSession(websocket, outbox_size=settings.SESSION_OUTBOX_SIZE)

    writer = asyncio.create_task(
        session.run_writer(), name=f"viewer-{session.session_id[:8]}"
    )
    # writer side failure unregisters without waiting for the read side to notice
    writer.add_done_callback(lambda _t: proxy.end_session(session))
    proxy.begin_session(session)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                data = message.get("bytes") or b""
                text = data.decode("utf-8", errors="replace")
            await proxy.handle_viewer_message(session, text)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.warning("viewer %s transport error: %s", session.session_id[:8], exc)
    finally:
        proxy.end_session(session)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
