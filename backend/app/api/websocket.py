# backend/app/api/websocket.py
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)
router = APIRouter()


class ConnectionManager:
    """
    Live HUD connections.

    A client may subscribe to a single training session with ?session_id=...;
    without it the client receives updates for every session.
    """

    def __init__(self) -> None:
        self.active_connections: Dict[WebSocket, Optional[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: Optional[str] = None) -> None:
        await websocket.accept()
        async with self._lock:
            self.active_connections[websocket] = session_id
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.active_connections.pop(websocket, None)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: Dict[str, Any]) -> None:
        target = message.get("session_id")
        async with self._lock:
            connections = [
                ws for ws, subscribed in self.active_connections.items()
                if subscribed is None or target is None or subscribed == target
            ]

        if not connections:
            return

        disconnected: Set[WebSocket] = set()

        for ws in connections:
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.warning(f"WS send failed; dropping connection: {e}")
                disconnected.add(ws)

        if disconnected:
            async with self._lock:
                for ws in disconnected:
                    self.active_connections.pop(ws, None)


manager = ConnectionManager()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    session_id: Optional[str] = Query(None, description="Only stream updates for this training session"),
):
    await manager.connect(websocket, session_id)

    try:
        await websocket.send_json(
            {
                "type": "connection",
                "status": "connected",
                "session_id": session_id,
                "timestamp": datetime.now().isoformat(),
            }
        )

        while True:
            data = await websocket.receive_text()

            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json(
                    {
                        "type": "error",
                        "message": "Invalid JSON format",
                        "timestamp": datetime.now().isoformat(),
                    }
                )
                continue

            if msg.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": datetime.now().isoformat()})

    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket fatal error: {e}")
        await manager.disconnect(websocket)


async def broadcast_session_update(data: Dict[str, Any]) -> None:
    message = {**data, "timestamp": datetime.now().isoformat()}
    await manager.broadcast(message)


def get_connection_count() -> int:
    return len(manager.active_connections)
