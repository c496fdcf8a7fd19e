"""Session lifecycle — connect, subscribe, unsubscribe, disconnect.

Learn: Each connection walks a small state machine:

    connecting ──► open ──► closing ──► closed
        │          │ ▲                    ▲
        │          └─┘ subscribe /        │
        │              unsubscribe        │
        └──────────────┴──────────────────┘  fatal transport error

Subscribe/unsubscribe never leave `open`; they update the Channel
Directory and the connection's own channel set together. Both ways out
(close_session for a clean disconnect, abort_session for a broken
transport) run the registry's unregister cascade. `closed` is terminal —
a client that reconnects gets a brand new Connection and id, and it is
up to the client to subscribe again.
"""

import json
import re
from typing import Any, Optional

import structlog

from chatrelay.events.types import (
    CONNECTION_ESTABLISHED,
    ERROR,
    PING,
    PONG,
    SUBSCRIBE,
    SUBSCRIPTION_COUNT,
    SUBSCRIPTION_SUCCEEDED,
    UNSUBSCRIBE,
    UNSUBSCRIBED,
)
from chatrelay.realtime.delivery import DeliveryEngine, MessageEvent
from chatrelay.realtime.directory import ChannelDirectory
from chatrelay.realtime.errors import ConnectionNotFound, InvalidRequest, TransportFailure
from chatrelay.realtime.registry import (
    Connection,
    ConnectionRegistry,
    ConnectionState,
    Transport,
)

logger = structlog.get_logger()

CHANNEL_NAME_RE = re.compile(r"^[A-Za-z0-9_\-=@,.;]+$")


def validate_channel_name(channel: Any, max_length: int = 164) -> str:
    """Return `channel` if it is a usable channel id, else raise InvalidRequest."""
    if not isinstance(channel, str) or not channel:
        raise InvalidRequest("channel must be a non-empty string")
    if len(channel) > max_length:
        raise InvalidRequest(f"channel name exceeds {max_length} characters")
    if not CHANNEL_NAME_RE.match(channel):
        raise InvalidRequest(f"invalid channel name: {channel!r}")
    return channel


class SessionManager:
    """Drives every connection through its lifecycle."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        directory: ChannelDirectory,
        engine: DeliveryEngine,
        *,
        max_channels_per_connection: int = 100,
        max_channel_name_length: int = 164,
        notify_subscription_count: bool = True,
    ):
        self.registry = registry
        self.directory = directory
        self.engine = engine
        self.max_channels_per_connection = max_channels_per_connection
        self.max_channel_name_length = max_channel_name_length
        self.notify_subscription_count = notify_subscription_count

    # ─── Connect ──────────────────────────────────────────

    async def open_session(self, transport: Transport) -> Connection:
        """connecting → open. Registers the connection and greets the client."""
        connection = Connection(transport=transport)
        connection.transition(ConnectionState.OPEN)
        self.registry.register(connection)
        logger.info("relay.connection_opened", connection_id=connection.id)

        await self._send(
            connection,
            CONNECTION_ESTABLISHED,
            {"connection_id": connection.id},
        )
        if not connection.is_open:
            raise TransportFailure(f"Handshake with {connection.id} failed")
        return connection

    # ─── Membership ───────────────────────────────────────

    async def subscribe(self, connection_id: str, channel: str) -> int:
        """open → open. Join a channel; returns its member count."""
        connection = self._require_open(connection_id)
        validate_channel_name(channel, self.max_channel_name_length)

        changed = channel not in connection.channels
        if changed:
            if len(connection.channels) >= self.max_channels_per_connection:
                raise InvalidRequest(
                    f"connection may join at most "
                    f"{self.max_channels_per_connection} channels"
                )
            count = self.directory.subscribe(channel, connection_id)
            connection.channels.add(channel)
            connection.transition(ConnectionState.OPEN)
            logger.info(
                "relay.subscribed",
                connection_id=connection_id,
                channel=channel,
                subscription_count=count,
            )
        else:
            count = self.directory.member_count(channel)

        await self._send(
            connection,
            SUBSCRIPTION_SUCCEEDED,
            {"channel": channel, "subscription_count": count},
            channel=channel,
        )
        # A failed ack aborts the joiner and drops the count again.
        count = self.directory.member_count(channel)
        if changed and connection.is_open:
            await self._notify_count(channel, count)
        return count

    async def unsubscribe(self, connection_id: str, channel: str) -> int:
        """open → open. Leave a channel; returns its remaining member count."""
        connection = self._require_open(connection_id)
        if not isinstance(channel, str) or not channel:
            raise InvalidRequest("channel must be a non-empty string")

        changed = channel in connection.channels
        if changed:
            count = self.directory.unsubscribe(channel, connection_id)
            connection.channels.discard(channel)
            connection.transition(ConnectionState.OPEN)
            logger.info(
                "relay.unsubscribed",
                connection_id=connection_id,
                channel=channel,
                subscription_count=count,
            )
        else:
            count = self.directory.member_count(channel)

        await self._send(connection, UNSUBSCRIBED, {"channel": channel}, channel=channel)
        count = self.directory.member_count(channel)
        if changed:
            await self._notify_count(channel, count)
        return count

    # ─── Client frames ────────────────────────────────────

    async def handle_frame(self, connection_id: str, raw: str) -> None:
        """Dispatch one text frame received from a client.

        Frames look like {"event": "relay:subscribe", "payload": {"channel": "x"}}.
        Bad frames are answered with a relay:error frame and never close
        the connection.
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return
        try:
            event, payload = _parse_frame(raw)
            if event == SUBSCRIBE:
                await self.subscribe(connection_id, payload.get("channel"))
            elif event == UNSUBSCRIBE:
                await self.unsubscribe(connection_id, payload.get("channel"))
            elif event == PING:
                await self._send(connection, PONG, {})
            else:
                raise InvalidRequest(f"unsupported event: {event!r}")
        except InvalidRequest as e:
            logger.info("relay.invalid_frame", connection_id=connection_id, error=str(e))
            await self._send(connection, ERROR, {"code": e.code, "message": str(e)})
        except ConnectionNotFound:
            logger.debug("relay.frame_after_close", connection_id=connection_id)

    # ─── Disconnect ───────────────────────────────────────

    async def close_session(self, connection_id: str, *, close_transport: bool = True) -> None:
        """open → closing → closed. Idempotent."""
        connection = self.registry.get(connection_id)
        if connection is None or connection.state == ConnectionState.CLOSED:
            return
        if connection.can_transition(ConnectionState.CLOSING):
            connection.transition(ConnectionState.CLOSING)
        left = self.registry.unregister(connection_id)
        if close_transport:
            await self._close_transport(connection)
        connection.transition(ConnectionState.CLOSED)
        logger.info("relay.connection_closed", connection_id=connection_id)
        await self._notify_left(left)

    async def abort_session(self, connection_id: str) -> None:
        """any → closed, skipping closing. Used on fatal transport errors."""
        connection = self.registry.get(connection_id)
        if connection is None or connection.state == ConnectionState.CLOSED:
            return
        connection.transition(ConnectionState.CLOSED)
        left = self.registry.unregister(connection_id)
        logger.warning("relay.connection_aborted", connection_id=connection_id)
        await self._close_transport(connection, code=1011, reason="transport failure")
        await self._notify_left(left)

    # ─── Internals ────────────────────────────────────────

    def _require_open(self, connection_id: str) -> Connection:
        connection = self.registry.get(connection_id)
        if connection is None or not connection.is_open:
            raise ConnectionNotFound(f"Connection {connection_id} is not open")
        return connection

    async def _send(
        self,
        connection: Connection,
        event: str,
        payload: dict[str, Any],
        channel: Optional[str] = None,
    ) -> None:
        """Send a protocol frame to one connection; abort it if the send fails."""
        frame = {"event": event, "payload": payload}
        if channel is not None:
            frame["channel"] = channel
        try:
            await connection.transport.send_text(json.dumps(frame))
        except Exception as e:
            logger.warning(
                "relay.send_failed",
                connection_id=connection.id,
                event_name=event,
                error=str(e),
            )
            await self.abort_session(connection.id)

    async def _close_transport(self, connection: Connection, code: int = 1000, reason: str = "") -> None:
        try:
            await connection.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("relay.close_failed", connection_id=connection.id, error=str(e))

    async def _notify_count(self, channel: str, count: int) -> None:
        if not self.notify_subscription_count or count == 0:
            return
        await self.engine.deliver(
            MessageEvent(
                channel=channel,
                event=SUBSCRIPTION_COUNT,
                payload={"subscription_count": count},
            )
        )

    async def _notify_left(self, left: dict[str, int]) -> None:
        for channel, count in left.items():
            await self._notify_count(channel, count)


def _parse_frame(raw: str) -> tuple[str, dict[str, Any]]:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        raise InvalidRequest("frame is not valid JSON")
    if not isinstance(message, dict):
        raise InvalidRequest("frame must be a JSON object")
    event = message.get("event")
    if not isinstance(event, str) or not event:
        raise InvalidRequest("frame is missing an event name")
    payload = message.get("payload") or {}
    if not isinstance(payload, dict):
        raise InvalidRequest("frame payload must be an object")
    return event, payload
