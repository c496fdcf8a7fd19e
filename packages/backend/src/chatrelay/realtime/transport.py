"""WebSocket transport adapter.

Learn: The relay core only ever calls send_text() and close(). This
adapter maps those two primitives onto a Starlette WebSocket, bounds each
send with a timeout, and turns any send error into TransportFailure so
the core never has to know about Starlette's exception types.
"""

import asyncio

from starlette.websockets import WebSocket, WebSocketState

from chatrelay.realtime.errors import TransportFailure


class WebSocketTransport:
    """Transport backed by an accepted Starlette WebSocket."""

    def __init__(self, websocket: WebSocket, send_timeout: float = 5.0):
        self.websocket = websocket
        self.send_timeout = send_timeout

    @property
    def is_connected(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        if not self.is_connected:
            raise TransportFailure("WebSocket is not connected")
        try:
            await asyncio.wait_for(self.websocket.send_text(data), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            raise TransportFailure(f"send timed out after {self.send_timeout}s")
        except Exception as e:
            raise TransportFailure(str(e)) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.is_connected:
            await self.websocket.close(code=code, reason=reason)
