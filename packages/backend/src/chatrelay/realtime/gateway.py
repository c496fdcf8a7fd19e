"""Ingress gateway — the only way into the relay.

Learn: Two kinds of callers come through here:
1. Trusted producers (the HTTP publish routes) → publish()
2. Clients that just completed a WebSocket upgrade → connect()

publish() validates before anything else happens. A request with an
empty channel, no event name, or no payload raises InvalidRequest and
never reaches the delivery engine.
"""

import json
from typing import Any, Optional

from chatrelay.events.types import is_protocol_event
from chatrelay.realtime.delivery import DeliveryEngine, DeliveryReport
from chatrelay.realtime.errors import InvalidRequest
from chatrelay.realtime.registry import Connection, Transport
from chatrelay.realtime.session import SessionManager, validate_channel_name


class IngressGateway:
    """Validating front door for publishes and new connections."""

    def __init__(
        self,
        engine: DeliveryEngine,
        sessions: SessionManager,
        max_payload_bytes: int = 10240,
    ):
        self.engine = engine
        self.sessions = sessions
        self.max_payload_bytes = max_payload_bytes

    async def publish(
        self,
        channel: str,
        event: str,
        payload: Optional[dict[str, Any]],
        origin: Optional[str] = None,
    ) -> DeliveryReport:
        """Validate a publish request and hand it to the delivery engine."""
        validate_channel_name(channel, self.sessions.max_channel_name_length)
        if not isinstance(event, str) or not event:
            raise InvalidRequest("event must be a non-empty string")
        if is_protocol_event(event):
            raise InvalidRequest(f"event {event!r} is reserved")
        if payload is None:
            raise InvalidRequest("payload is required")
        if not isinstance(payload, dict):
            raise InvalidRequest("payload must be an object")
        size = len(json.dumps(payload, default=str).encode("utf-8"))
        if size > self.max_payload_bytes:
            raise InvalidRequest(
                f"payload is {size} bytes, limit is {self.max_payload_bytes}"
            )
        return await self.engine.publish(channel, event, payload, origin=origin)

    async def connect(self, transport: Transport) -> Connection:
        """Start a session for a freshly upgraded transport."""
        return await self.sessions.open_session(transport)
