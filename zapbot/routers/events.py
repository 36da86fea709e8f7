"""Real-time push channel for the admin UI."""

import asyncio
from contextlib import suppress

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from zapbot.container import Services, get_services
from zapbot.logging_config import get_logger
from zapbot.services.broadcast_service import EVENT_CONNECTION_STATUS, EVENT_QR

logger = get_logger("routers.events")

router = APIRouter()


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Forward queued events until a send fails, then close the socket."""
    while True:
        envelope = await queue.get()
        try:
            await websocket.send_json(envelope)
        except Exception as e:
            logger.warning(
                "Observer send failed, closing socket",
                extra={"context": {"event": envelope.get("event"), "error": str(e)}},
            )
            with suppress(Exception):
                await websocket.close()
            return


@router.websocket("/ws")
async def events_ws(websocket: WebSocket, services: Services = Depends(get_services)):
    await websocket.accept()
    broadcaster = services.broadcaster
    queue = broadcaster.subscribe()

    pump = None
    try:
        state = services.supervisor.state
        await websocket.send_json({"event": EVENT_CONNECTION_STATUS, "data": state.snapshot()})
        if state.last_qr_payload and not state.connected:
            await websocket.send_json({"event": EVENT_QR, "data": state.last_qr_payload})

        pump = asyncio.create_task(_pump(websocket, queue))
        while True:
            # Observers only listen; reading detects the disconnect.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if pump is not None:
            pump.cancel()
            with suppress(Exception, asyncio.CancelledError):
                await pump
        broadcaster.unsubscribe(queue)
