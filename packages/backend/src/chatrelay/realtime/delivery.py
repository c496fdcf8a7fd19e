"""Delivery engine — fans one published event out to a channel's members.

Learn: publish() reads the member set exactly once (a snapshot) before the
first await, then sends to every member concurrently. Consequences:

1. Publish calls on one channel take their snapshots in call order.
2. Someone who joins after the snapshot never sees the event (no history).
3. Someone who leaves after the snapshot is skipped, not an error.
4. A send that fails is logged and reported to on_failure (which tears
   that recipient down); it never stops the sends to the other members.

Delivery is at-most-once and best-effort. There are no acks and no retries.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from chatrelay.realtime.directory import ChannelDirectory
from chatrelay.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()

FailureHandler = Callable[[str], Awaitable[None]]
EventHandler = Callable[["MessageEvent"], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class MessageEvent:
    """One ephemeral event published to a channel. Never persisted."""
    channel: str
    event: str
    payload: dict[str, Any]
    origin: Optional[str] = None
    timestamp: int = field(default_factory=_now_ms)

    def to_frame(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "channel": self.channel,
            "payload": self.payload,
            "origin": self.origin,
            "timestamp": self.timestamp,
        }

    def encode(self) -> str:
        return json.dumps(self.to_frame(), default=str)


@dataclass
class DeliveryReport:
    """Outcome of one fan-out."""
    channel: str
    event: str
    attempted: int = 0
    delivered: int = 0
    skipped: int = 0
    failed: list[str] = field(default_factory=list)


class DeliveryEngine:
    """Pushes MessageEvents to the current members of a channel."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        directory: ChannelDirectory,
        on_failure: Optional[FailureHandler] = None,
    ):
        self.registry = registry
        self.directory = directory
        self.on_failure = on_failure
        # event name → ordered handlers, called synchronously per delivery
        self._bindings: dict[str, list[EventHandler]] = {}

    def bind(self, event: str, handler: EventHandler) -> None:
        """Call `handler` with every published `event`, in bind order."""
        self._bindings.setdefault(event, []).append(handler)

    def unbind(self, event: str, handler: EventHandler) -> None:
        """Remove one binding. Unknown bindings are ignored."""
        handlers = self._bindings.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._bindings[event]

    def bindings(self, event: str) -> list[EventHandler]:
        return list(self._bindings.get(event, ()))

    async def publish(
        self,
        channel: str,
        event: str,
        payload: dict[str, Any],
        origin: Optional[str] = None,
    ) -> DeliveryReport:
        """Build a MessageEvent and deliver it."""
        return await self.deliver(
            MessageEvent(channel=channel, event=event, payload=payload, origin=origin)
        )

    async def deliver(self, message: MessageEvent) -> DeliveryReport:
        # Snapshot before the first await.
        members = sorted(self.directory.members(message.channel))
        report = DeliveryReport(
            channel=message.channel,
            event=message.event,
            attempted=len(members),
        )

        for handler in self.bindings(message.event):
            try:
                handler(message)
            except Exception:
                logger.exception("relay.handler_failed", event_name=message.event)

        if not members:
            logger.debug("relay.publish_no_members", channel=message.channel)
            return report

        frame = message.encode()
        results = await asyncio.gather(
            *(self._send_one(cid, frame) for cid in members)
        )
        for cid, outcome in zip(members, results):
            if outcome == "delivered":
                report.delivered += 1
            elif outcome == "skipped":
                report.skipped += 1
            else:
                report.failed.append(cid)

        logger.info(
            "relay.published",
            channel=message.channel,
            event_name=message.event,
            origin=message.origin,
            attempted=report.attempted,
            delivered=report.delivered,
            failed=len(report.failed),
        )
        return report

    async def _send_one(self, connection_id: str, frame: str) -> str:
        """Send to one recipient. Never raises."""
        connection = self.registry.get(connection_id)
        if connection is None or not connection.is_open:
            # Left between snapshot and send.
            return "skipped"
        try:
            await connection.transport.send_text(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "relay.delivery_failed",
                connection_id=connection_id,
                error=str(e),
            )
            if self.on_failure is not None:
                try:
                    await self.on_failure(connection_id)
                except Exception:
                    logger.exception("relay.teardown_failed", connection_id=connection_id)
            return "failed"
        return "delivered"
