"""Channel queries — who is listening where.

Learn: Read-only views over the Channel Directory. Unknown channels are
not an error: they simply report zero subscribers.
"""

from fastapi import APIRouter, Depends

from chatrelay.realtime.relay import Relay, get_relay
from chatrelay.schemas.message import ChannelInfo, ChannelList

router = APIRouter()


@router.get("/channels", response_model=ChannelList)
async def list_channels(relay: Relay = Depends(get_relay)):
    """Occupied channels with their subscriber counts."""
    return ChannelList(channels=relay.directory.channels())


@router.get("/channels/{channel}", response_model=ChannelInfo)
async def get_channel(channel: str, relay: Relay = Depends(get_relay)):
    count = relay.directory.member_count(channel)
    return ChannelInfo(channel=channel, occupied=count > 0, subscription_count=count)
