"""WebSocket endpoint — the connection-upgrade side of the gateway.

Learn: Each client connects to /ws and keeps the socket open for as long
as it wants to receive events. The handler:
1. Accepts the upgrade and hands the transport to the gateway
2. Reads client frames (subscribe / unsubscribe / ping) until disconnect
3. Closes the session on a clean disconnect, aborts it on anything else

Published events never pass through this handler — the delivery engine
writes straight to each member's transport.
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
import structlog

from chatrelay.realtime.errors import TransportFailure
from chatrelay.realtime.relay import Relay, get_relay
from chatrelay.realtime.transport import WebSocketTransport

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def relay_websocket(websocket: WebSocket, relay: Relay = Depends(get_relay)):
    """Long-lived client connection: one per browser tab or Python client."""
    await websocket.accept()

    transport = WebSocketTransport(
        websocket, send_timeout=relay.settings.send_timeout_seconds
    )
    try:
        connection = await relay.gateway.connect(transport)
    except TransportFailure:
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            await relay.sessions.handle_frame(connection.id, _frame_text(message))
    except WebSocketDisconnect as e:
        logger.debug("relay.client_disconnected", connection_id=connection.id, code=e.code)
        await relay.sessions.close_session(connection.id, close_transport=False)
    except Exception as e:
        logger.warning("relay.connection_error", connection_id=connection.id, error=str(e))
        await relay.sessions.abort_session(connection.id)


def _frame_text(message: dict) -> str:
    """Text of a received frame. Binary frames are read as UTF-8 JSON."""
    text = message.get("text")
    if text is not None:
        return text
    data = message.get("bytes") or b""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        # Not JSON either; handle_frame answers with relay:error.
        return ""
