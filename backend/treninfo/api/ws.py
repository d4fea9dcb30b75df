"""WebSocket endpoint for tracking notification triggers."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
broadcaster = None


@router.websocket("/ws/tracking")
async def tracking_ws(websocket: WebSocket) -> None:
    """Stream delay, status and ETA triggers.

    Repeat the ``key`` query parameter to follow specific tracking keys;
    without it every tracked train is streamed.
    """
    await websocket.accept()

    if broadcaster is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    sub = broadcaster.subscribe(websocket.query_params.getlist("key"))
    try:
        replay = await broadcaster.last_batch(sub)
        if replay:
            await websocket.send_bytes(replay)
        while True:
            await websocket.send_bytes(await sub.queue.get())
    except (WebSocketDisconnect, asyncio.CancelledError):
        logger.debug("Tracking subscriber left")
    except Exception:
        logger.exception("WebSocket error")
    finally:
        broadcaster.unsubscribe(sub)
