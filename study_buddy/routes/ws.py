"""
Study Buddy Matchmaker - WebSocket Push Transport

One socket is one registry entry. Frames are JSON envelopes; everything
after parsing is handled by the session manager.
"""

import logging

from fastapi import APIRouter, WebSocket

from study_buddy.dependencies import client_address
from study_buddy.services.channels import WebSocketChannel
from study_buddy.services.container import Services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def ws_endpoint(websocket: WebSocket):
    services: Services = websocket.app.state.services
    await websocket.accept()
    state = services.registry.register(WebSocketChannel(websocket), address=client_address(websocket))
    connection_id = state.connection_id

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Text and binary frames carry the same JSON envelope
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes") or b""
            try:
                await services.sessions.handle_frame(connection_id, frame)
            except Exception:
                # One bad frame must not take the connection down
                logger.exception("Unhandled error processing frame from %s", connection_id)
    finally:
        await services.sessions.disconnect(connection_id)
