"""Channel directory — channel id → member connection ids.

Learn: Channels are created lazily on the first subscribe and evicted as
soon as their last member leaves. Membership reads hand out frozen
snapshots, never the live set, so a fan-out that is halfway through its
sends is not affected by subscribes/unsubscribes that happen meanwhile.

All methods are synchronous and never await. On a single event loop that
makes every call a critical section for free.
"""

from dataclasses import dataclass, field

from chatrelay.realtime.errors import InvalidRequest


@dataclass
class Channel:
    """A named topic and the connections currently joined to it."""
    id: str
    members: set[str] = field(default_factory=set)

    @property
    def member_count(self) -> int:
        return len(self.members)


class ChannelDirectory:
    """Tracks which connections are members of which channels."""

    def __init__(self):
        self._channels: dict[str, Channel] = {}

    def subscribe(self, channel_id: str, connection_id: str) -> int:
        """Add a connection to a channel. Returns the updated member count.

        Subscribing to a channel the connection already belongs to is a
        no-op and returns the unchanged count.
        """
        if not channel_id:
            raise InvalidRequest("channel must not be empty")
        channel = self._channels.get(channel_id)
        if channel is None:
            channel = self._channels[channel_id] = Channel(id=channel_id)
        channel.members.add(connection_id)
        return channel.member_count

    def unsubscribe(self, channel_id: str, connection_id: str) -> int:
        """Remove a connection from a channel. Returns the remaining count.

        Unknown channels and non-members are no-ops. A channel whose last
        member leaves is evicted.
        """
        channel = self._channels.get(channel_id)
        if channel is None:
            return 0
        channel.members.discard(connection_id)
        if not channel.members:
            del self._channels[channel_id]
            return 0
        return channel.member_count

    def members(self, channel_id: str) -> frozenset[str]:
        """Snapshot of a channel's member ids (empty for unknown channels)."""
        channel = self._channels.get(channel_id)
        if channel is None:
            return frozenset()
        return frozenset(channel.members)

    def member_count(self, channel_id: str) -> int:
        channel = self._channels.get(channel_id)
        return channel.member_count if channel else 0

    def is_member(self, channel_id: str, connection_id: str) -> bool:
        channel = self._channels.get(channel_id)
        return channel is not None and connection_id in channel.members

    def channels(self) -> dict[str, int]:
        """Occupied channels with their member counts."""
        return {cid: ch.member_count for cid, ch in sorted(self._channels.items())}

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._channels
