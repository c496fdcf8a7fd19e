"""Connection registry — every live client transport, by id.

Learn: A Connection and the Channel Directory mirror each other: a
connection lists the channels it joined, each channel lists its member
connections. Neither side owns the other. The registry keeps them in
step on the way out — unregistering a connection also removes it from
every channel it was in, so no channel keeps pointing at a dead socket.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from chatrelay.realtime.directory import ChannelDirectory
from chatrelay.realtime.errors import InvalidTransition


class Transport(Protocol):
    """The raw primitives a transport-upgrade layer hands to the relay."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# Any state may drop straight to CLOSED on a fatal transport error.
_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.CONNECTING: frozenset({ConnectionState.OPEN, ConnectionState.CLOSED}),
    ConnectionState.OPEN: frozenset({
        ConnectionState.OPEN,
        ConnectionState.CLOSING,
        ConnectionState.CLOSED,
    }),
    ConnectionState.CLOSING: frozenset({ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
}


def _new_connection_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class Connection:
    """One live client transport and the channels it has joined."""
    transport: Transport
    id: str = field(default_factory=_new_connection_id)
    channels: set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.CONNECTING
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def can_transition(self, target: ConnectionState) -> bool:
        return target in _TRANSITIONS[self.state]

    def transition(self, target: ConnectionState) -> None:
        """Move to `target`, or raise InvalidTransition if that is illegal."""
        if not self.can_transition(target):
            raise InvalidTransition(
                f"Connection {self.id} cannot go from "
                f"{self.state.value} to {target.value}"
            )
        self.state = target

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN


class ConnectionRegistry:
    """Owns every registered Connection."""

    def __init__(self, directory: ChannelDirectory):
        self.directory = directory
        self._connections: dict[str, Connection] = {}

    def register(self, connection: Connection) -> str:
        self._connections[connection.id] = connection
        return connection.id

    def unregister(self, connection_id: str) -> dict[str, int]:
        """Remove a connection and leave every channel it joined.

        Returns {channel: remaining member count} for the channels left.
        Unregistering an unknown id is a no-op, so disconnect is idempotent.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return {}
        left = {}
        for channel_id in sorted(connection.channels):
            left[channel_id] = self.directory.unsubscribe(channel_id, connection_id)
        connection.channels.clear()
        return left

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections(self) -> list[Connection]:
        """Snapshot of all registered connections."""
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections
