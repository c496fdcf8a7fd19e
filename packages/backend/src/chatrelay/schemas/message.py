"""Pydantic schemas for publishing.

Learn: Two ways to publish:
- ChatMessage: the chat demo's own shape, posted by the browser client
  to POST /message and re-broadcast as a "message-in" event.
- PublishRequest: the generic shape for any trusted producer
  (POST /api/v1/events) — channel, event name, payload, origin.

Both are deliberately lenient: the gateway does the real validation so
HTTP and in-process callers get the same InvalidRequest rules.
"""

import time
from typing import Any, Optional

from pydantic import BaseModel, Field


# ─── Chat demo message (browser → relay) ────────────────


class ChatMessage(BaseModel):
    """A chat line as sent by the browser client."""
    message: str = Field(..., description="Message text")
    sender: str = Field(..., description="Display name of the sender")
    channel: str = Field(..., description="Channel to broadcast to")
    user_id: Optional[str] = Field(None, description="Sender's client id")
    timestamp: int = Field(
        default_factory=lambda: int(time.time() * 1000),
        description="Epoch milliseconds (defaults to receipt time)",
    )

    def to_payload(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "sender": self.sender,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
        }


# ─── Generic publish (producer → relay) ─────────────────


class PublishRequest(BaseModel):
    """Publish an arbitrary event to a channel."""
    channel: str = Field(..., description="Target channel id")
    event: str = Field(..., description="Event name, e.g. 'message-in'")
    payload: Optional[dict[str, Any]] = Field(None, description="Event data")
    origin: Optional[str] = Field(None, description="Sender id, echoed to clients")


# ─── Read (relay → producer) ────────────────────────────


class PublishResult(BaseModel):
    """Fan-out outcome for one publish."""
    channel: str
    event: str
    attempted: int
    delivered: int
    failed: list[str]


class ChannelInfo(BaseModel):
    channel: str
    occupied: bool
    subscription_count: int


class ChannelList(BaseModel):
    channels: dict[str, int]
