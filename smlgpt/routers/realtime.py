"""WebSocket channel carrying per-session processing notifications."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..dependencies import ServiceContainer, get_socket_services
from ..services.notifier import SessionHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def session_socket(
    websocket: WebSocket,
    services: ServiceContainer = Depends(get_socket_services),
) -> None:
    """Accept ``join-session``/``leave-session`` messages and relay events."""

    hub = services.notifier
    await websocket.accept()
    if not isinstance(hub, SessionHub):
        await websocket.close(code=1011)
        return

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "data": "Invalid message"})
                continue
            if not isinstance(message, dict):
                continue
            event = message.get("event")
            session_id = message.get("data")
            if not isinstance(session_id, str) or not session_id:
                await websocket.send_json({"event": "error", "data": "sessionId is required"})
                continue
            if event == "join-session":
                await hub.join(session_id, websocket)
                await websocket.send_json({"event": "joined-session", "data": session_id})
            elif event == "leave-session":
                await hub.leave(session_id, websocket)
                await websocket.send_json({"event": "left-session", "data": session_id})
    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected")
    finally:
        await hub.disconnect(websocket)


__all__ = ["router"]
