import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from planning_poker.services.coordinator import SessionCoordinator

router = APIRouter(tags=["realtime"])

logger = logging.getLogger(__name__)


def get_coordinator(websocket: WebSocket) -> SessionCoordinator:
    return websocket.app.state.coordinator


@router.websocket("/ws")
async def session_socket(websocket: WebSocket) -> None:
    """
    Planning-poker session endpoint. One JSON message per frame in both directions.

    Clients must answer every server {"type": "ping"} with {"type": "pong"} before
    the next heartbeat interval (session_guard.heartbeat_interval_seconds, 30s by
    default). A connection that leaves a ping unanswered is closed with code 1001,
    independently of the idle timeout. A pong does not count as activity for the
    idle timeout.
    """
    coordinator = get_coordinator(websocket)
    connection_id = await coordinator.connect(websocket)
    logger.info("Client connected: connection_id=%s", connection_id)

    try:
        while websocket.application_state == WebSocketState.CONNECTED:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await coordinator.handle_message(connection_id, raw)
    except WebSocketDisconnect as exc:
        logger.debug(
            "WebSocketDisconnect: connection_id=%s code=%s",
            connection_id,
            exc.code,
        )
    finally:
        await coordinator.disconnect(connection_id)
        logger.info("Client disconnected: connection_id=%s", connection_id)
