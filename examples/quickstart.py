#!/usr/bin/env python3
"""
chatrelay Quickstart — one listener, one message, one round trip.

Connects a client → subscribes to "programming" → posts a chat message
over HTTP → prints it when it comes back over the WebSocket.
Run with: python examples/quickstart.py

Relay must be running: chatrelay serve
"""

import asyncio
import uuid

import httpx

from _common import BASE, WS_URL, check_backend
from chatrelay.client import ClientMessage, RelayClient


async def main():
    check_backend()
    user_id = uuid.uuid4().hex[:8]
    done = asyncio.Event()

    client = RelayClient(WS_URL, user_id=user_id)
    client.on_state_change(lambda prev, cur: print(f"  state: {prev.value} → {cur.value}"))

    print("\n1. Connecting and joining #programming...")
    await client.connect()
    channel = await client.subscribe("programming")

    def on_message(msg: ClientMessage):
        kind = "outgoing" if msg.outgoing else "incoming"
        print(f"   [{kind}] {msg.payload['sender']}: {msg.payload['message']}")
        done.set()

    channel.bind("message-in", on_message)
    channel.bind(
        "relay:subscription_count",
        lambda msg: print(f"   {msg.payload['subscription_count']} online"),
    )
    runner = asyncio.create_task(client.run())

    print("\n2. Posting a message...")
    async with httpx.AsyncClient(base_url=BASE, timeout=10) as http:
        resp = await http.post("/message", json={
            "message": "Hello World",
            "sender": "Quickstart",
            "channel": "programming",
            "user_id": user_id,
        })
        assert resp.status_code == 200, f"Failed: {resp.text}"

    print("\n3. Waiting for the echo...")
    await asyncio.wait_for(done.wait(), timeout=5)

    await client.disconnect()
    await runner
    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(main())
