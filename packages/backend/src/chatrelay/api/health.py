"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and
reports how many connections and occupied channels the relay holds.
"""

from fastapi import APIRouter, Depends

from chatrelay import __version__
from chatrelay.realtime.relay import Relay, get_relay

router = APIRouter()


@router.get("/health")
async def health_check(relay: Relay = Depends(get_relay)):
    """Check server health and relay occupancy."""
    return {
        "status": "healthy",
        "server": "ok",
        "version": __version__,
        "connections": len(relay.registry),
        "channels": len(relay.directory),
    }
