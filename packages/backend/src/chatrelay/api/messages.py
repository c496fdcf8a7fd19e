"""Publish API — trusted producers push events into channels.

Learn: Routes:
- POST /message → chat demo: re-broadcast a chat line as "message-in"
- POST /api/v1/events → publish any event to any channel
- GET /test → plain-text liveness check used by the demo

Publishing never waits on a client. The response reports how many
members the fan-out reached; zero members is still a success.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from chatrelay.events.types import MESSAGE_IN
from chatrelay.realtime.errors import InvalidRequest
from chatrelay.realtime.relay import Relay, get_relay
from chatrelay.schemas.message import ChatMessage, PublishRequest, PublishResult

router = APIRouter()
demo_router = APIRouter()


# ─── Chat demo ──────────────────────────────────────────


@demo_router.get("/test", response_class=PlainTextResponse)
async def test_page():
    return "Running group chat relay server"


@demo_router.post("/message", response_class=PlainTextResponse)
async def post_message(body: ChatMessage, relay: Relay = Depends(get_relay)):
    """Broadcast a chat message to everyone in its channel."""
    try:
        await relay.gateway.publish(
            channel=body.channel,
            event=MESSAGE_IN,
            payload=body.to_payload(),
            origin=body.user_id,
        )
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    return "OK"


# ─── Generic publish ────────────────────────────────────


@router.post("/events", response_model=PublishResult, status_code=202)
async def publish_event(body: PublishRequest, relay: Relay = Depends(get_relay)):
    """Publish an event to every current member of a channel."""
    try:
        report = await relay.gateway.publish(
            channel=body.channel,
            event=body.event,
            payload=body.payload,
            origin=body.origin,
        )
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PublishResult(
        channel=report.channel,
        event=report.event,
        attempted=report.attempted,
        delivered=report.delivered,
        failed=report.failed,
    )
