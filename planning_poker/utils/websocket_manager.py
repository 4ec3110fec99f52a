from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Any
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class ConnectionInfo:
    """Metadata describing a single WebSocket connection."""

    id: str
    websocket: WebSocket

    async def send_json(self, message: Dict[str, Any]) -> None:
        """Proxy to the underlying WebSocket send_json method."""
        await self.websocket.send_json(message)


class WebSocketManager:
    """Open connections of one room; the only place that writes to sockets."""

    def __init__(self):
        # Key: connection_id, Value: ConnectionInfo
        self.active_connections: Dict[str, ConnectionInfo] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a WebSocket and return the id it is tracked under."""
        await websocket.accept()
        return self.register(websocket)

    def register(self, websocket: WebSocket) -> str:
        connection_id = str(uuid4())
        self.active_connections[connection_id] = ConnectionInfo(
            id=connection_id,
            websocket=websocket,
        )
        logger.debug("WebSocket connected: connection_id=%s", connection_id)
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """Forget a WebSocket connection."""
        if self.active_connections.pop(connection_id, None) is not None:
            logger.debug("WebSocket disconnected: connection_id=%s", connection_id)

    async def broadcast(self, message: Dict[str, Any]) -> None:
        """Broadcast a message to every open connection."""
        disconnected: list[str] = []

        # Iterate over a snapshot; a failed send below mutates the mapping.
        for connection_id, connection in list(self.active_connections.items()):
            try:
                await connection.send_json(message)
            except Exception:  # pragma: no cover - depends on network
                disconnected.append(connection_id)

        for connection_id in disconnected:
            self.disconnect(connection_id)

    async def send_personal_message(
        self,
        connection_id: str,
        message: Dict[str, Any],
    ) -> bool:
        """Send a message to one connection; False when it is gone or the send failed."""
        connection = self.active_connections.get(connection_id)
        if not connection:
            return False
        try:
            await connection.send_json(message)
        except Exception:  # pragma: no cover - depends on network
            self.disconnect(connection_id)
            return False
        return True

    async def close(self, connection_id: str, *, code: int = 1000, reason: str = "") -> None:
        """Close a connection from the server side and stop tracking it."""
        connection = self.active_connections.pop(connection_id, None)
        if not connection:
            return
        try:
            await connection.websocket.close(code=code, reason=reason)
        except Exception:  # pragma: no cover - socket already gone
            logger.debug("Close failed for connection_id=%s", connection_id)
        logger.debug("WebSocket closed by server: connection_id=%s code=%s", connection_id, code)

    def __len__(self) -> int:
        return len(self.active_connections)
