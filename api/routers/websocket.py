"""WebSocket endpoint for live wind readings and freshly written summaries."""

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.ws_manager import WebSocketManager

router = APIRouter()


@router.websocket("/ws/live")
async def websocket_live(websocket: WebSocket):
    """
    Real-time WebSocket endpoint.

    Clients receive everything under ``wind/`` by default and may narrow it
    with channel prefixes:
        {"type": "subscribe", "channels": ["wind/live/station-7", "wind/aggregated/10min/"]}

    Messages are pushed by the PubSubListener via the WebSocketManager.
    """
    manager: WebSocketManager = websocket.app.state.ws_manager
    await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if data.get("type") == "subscribe" and isinstance(data.get("channels"), list):
                manager.update_filters(websocket, data["channels"])
            elif data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(websocket)
