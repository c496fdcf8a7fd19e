"""Python client for the relay — the counterpart of the browser client.

Learn: The client is an explicit state machine instead of a pile of
"am I connected?" checks before every call:

    initialized ──► connecting ──► connected ──► disconnected
                        │              │               │
                        ▼              ▼               │
                    unavailable ◄──────┘               │
                        │                              │
                        └──────────► connecting ◄──────┘

connect() is only legal from initialized, disconnected or unavailable.
A new server connection always gets a new connection id, so after every
(re)connect the client replays its channel memberships itself.

Usage:
    client = RelayClient("ws://localhost:3000/ws", user_id="me")
    await client.connect()
    chat = await client.subscribe("programming")
    chat.bind("message-in", lambda msg: print(msg.payload["message"]))
    await client.run()
"""

import asyncio
import enum
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from chatrelay.events.types import (
    CONNECTION_ESTABLISHED,
    ERROR,
    PING,
    SUBSCRIBE,
    SUBSCRIPTION_COUNT,
    SUBSCRIPTION_SUCCEEDED,
    UNSUBSCRIBE,
    UNSUBSCRIBED,
)
from chatrelay.realtime.errors import InvalidTransition

logger = structlog.get_logger()

Connector = Callable[[str], Awaitable[Any]]


class ClientState(str, enum.Enum):
    INITIALIZED = "initialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    UNAVAILABLE = "unavailable"
    DISCONNECTED = "disconnected"


_CLIENT_TRANSITIONS: dict[ClientState, frozenset[ClientState]] = {
    ClientState.INITIALIZED: frozenset({ClientState.CONNECTING}),
    ClientState.CONNECTING: frozenset({
        ClientState.CONNECTED,
        ClientState.UNAVAILABLE,
        ClientState.DISCONNECTED,
    }),
    ClientState.CONNECTED: frozenset({ClientState.UNAVAILABLE, ClientState.DISCONNECTED}),
    ClientState.UNAVAILABLE: frozenset({ClientState.CONNECTING, ClientState.DISCONNECTED}),
    ClientState.DISCONNECTED: frozenset({ClientState.CONNECTING}),
}


@dataclass
class ClientMessage:
    """An event as received by a client."""
    event: str
    channel: Optional[str]
    payload: dict[str, Any]
    origin: Optional[str] = None
    timestamp: Optional[int] = None
    outgoing: bool = False


EventCallback = Callable[[ClientMessage], None]
StateCallback = Callable[[ClientState, ClientState], None]


class ClientChannel:
    """A channel the client wants to be in, with its event bindings."""

    def __init__(self, name: str):
        self.name = name
        self.subscribed = False
        self.subscription_count = 0
        self._bindings: dict[str, list[EventCallback]] = {}

    def bind(self, event: str, callback: EventCallback) -> None:
        self._bindings.setdefault(event, []).append(callback)

    def unbind(self, event: str, callback: Optional[EventCallback] = None) -> None:
        """Remove one callback, or every callback for `event`."""
        if callback is None:
            self._bindings.pop(event, None)
            return
        callbacks = self._bindings.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, message: ClientMessage) -> None:
        for callback in list(self._bindings.get(message.event, ())):
            try:
                callback(message)
            except Exception:
                logger.exception(
                    "client.callback_failed",
                    channel=self.name,
                    event_name=message.event,
                )


class RelayClient:
    """Connects to /ws, keeps subscriptions, dispatches events to bindings."""

    def __init__(
        self,
        url: str,
        *,
        user_id: Optional[str] = None,
        reconnect: bool = True,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        connector: Optional[Connector] = None,
    ):
        self.url = url
        self.user_id = user_id
        self.reconnect = reconnect
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._connector = connector or websockets.connect
        self.state = ClientState.INITIALIZED
        self.connection_id: Optional[str] = None
        self.channels: dict[str, ClientChannel] = {}
        self._ws = None
        self._state_callbacks: list[StateCallback] = []

    # ─── State machine ────────────────────────────────────

    def on_state_change(self, callback: StateCallback) -> None:
        self._state_callbacks.append(callback)

    def _transition(self, target: ClientState) -> None:
        if target not in _CLIENT_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"client cannot go from {self.state.value} to {target.value}"
            )
        previous, self.state = self.state, target
        logger.debug("client.state_change", previous=previous.value, current=target.value)
        for callback in list(self._state_callbacks):
            callback(previous, target)

    # ─── Connection ───────────────────────────────────────

    async def connect(self) -> None:
        """Open a connection and replay channel memberships."""
        if self.state == ClientState.CONNECTED:
            return
        self._transition(ClientState.CONNECTING)
        try:
            self._ws = await self._connector(self.url)
            first = json.loads(await self._ws.recv())
        except (OSError, WebSocketException, asyncio.TimeoutError, ValueError) as e:
            logger.warning("client.connect_failed", url=self.url, error=str(e))
            self._ws = None
            self._transition(ClientState.UNAVAILABLE)
            raise

        event = first.get("event") if isinstance(first, dict) else None
        if event != CONNECTION_ESTABLISHED:
            await self._ws.close()
            self._ws = None
            self._transition(ClientState.UNAVAILABLE)
            raise ConnectionError(f"unexpected handshake frame: {event!r}")

        self.connection_id = first.get("payload", {}).get("connection_id")
        self._transition(ClientState.CONNECTED)
        for channel in self.channels.values():
            channel.subscribed = False
            await self._send(SUBSCRIBE, {"channel": channel.name})

    async def disconnect(self) -> None:
        """Close the connection. Channel bindings are kept for a later connect()."""
        if self.state in (ClientState.DISCONNECTED, ClientState.INITIALIZED):
            return
        # Leave CONNECTED before closing so run() does not treat it as a drop.
        ws, self._ws = self._ws, None
        self._transition(ClientState.DISCONNECTED)
        for channel in self.channels.values():
            channel.subscribed = False
            channel.subscription_count = 0
        self.connection_id = None
        if ws is not None:
            await ws.close()

    # ─── Channels ─────────────────────────────────────────

    async def subscribe(self, name: str) -> ClientChannel:
        channel = self.channels.get(name)
        if channel is None:
            channel = self.channels[name] = ClientChannel(name)
        if self.state == ClientState.CONNECTED and not channel.subscribed:
            await self._send(SUBSCRIBE, {"channel": name})
        return channel

    async def unsubscribe(self, name: str) -> None:
        channel = self.channels.pop(name, None)
        if channel is not None and self.state == ClientState.CONNECTED:
            await self._send(UNSUBSCRIBE, {"channel": name})

    async def ping(self) -> None:
        await self._send(PING, {})

    # ─── Receive loop ─────────────────────────────────────

    async def run(self) -> None:
        """Receive and dispatch frames until disconnect().

        When the connection drops unexpectedly the client goes
        unavailable and, if reconnect is on, retries with exponential
        backoff.
        """
        backoff = self.initial_backoff
        while self.state != ClientState.DISCONNECTED:
            if self.state != ClientState.CONNECTED:
                try:
                    await self.connect()
                    backoff = self.initial_backoff
                except (OSError, WebSocketException, asyncio.TimeoutError, ValueError):
                    if not self.reconnect:
                        return
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, self.max_backoff)
                    continue
            try:
                raw = await self._ws.recv()
            except ConnectionClosed:
                if self.state != ClientState.CONNECTED:
                    return
                logger.info("client.connection_lost", url=self.url)
                self._ws = None
                self._transition(ClientState.UNAVAILABLE)
                if not self.reconnect:
                    return
                continue
            self.dispatch(raw)

    def dispatch(self, raw: str) -> None:
        """Route one server frame to the matching channel's bindings."""
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("client.bad_frame")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("payload") or {}, dict):
            logger.warning("client.bad_frame")
            return
        event = frame.get("event")
        payload = frame.get("payload") or {}
        channel = self.channels.get(frame.get("channel") or "")

        if event == ERROR:
            logger.warning("client.relay_error", error=payload)
            return
        if channel is None:
            return
        if event == SUBSCRIPTION_SUCCEEDED:
            channel.subscribed = True
            channel.subscription_count = payload.get("subscription_count", 0)
        elif event == UNSUBSCRIBED:
            channel.subscribed = False
        elif event == SUBSCRIPTION_COUNT:
            channel.subscription_count = payload.get("subscription_count", 0)

        origin = frame.get("origin")
        channel.emit(
            ClientMessage(
                event=event,
                channel=channel.name,
                payload=payload,
                origin=origin,
                timestamp=frame.get("timestamp"),
                outgoing=origin is not None and origin == self.user_id,
            )
        )

    async def _send(self, event: str, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("client is not connected")
        await self._ws.send(json.dumps({"event": event, "payload": payload}))
