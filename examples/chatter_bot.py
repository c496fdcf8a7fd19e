#!/usr/bin/env python3
"""
chatrelay chatter bot — keeps a channel busy for demos.

Posts a rotating set of messages to a channel every few seconds as
"Mona Lisa", pausing longer after each full round.
Run with: python examples/chatter_bot.py [channel]

Relay must be running: chatrelay serve
"""

import sys
import time
import uuid

import httpx

from _common import BASE, check_backend

MESSAGES = [
    "Hello World",
    "Hi James.\nNice to Meet you.\nHope all is well.",
    "Lorem ipsum dolor sit amet consectetur adipisicing elit. Ea optio enim "
    "saepe itaque eos earum, ipsa suscipit veritatis eligendi a, vitae possimus.",
]


def main():
    check_backend()
    channel = sys.argv[1] if len(sys.argv) > 1 else "programming"
    user_id = uuid.uuid4().hex[:10]
    client = httpx.Client(base_url=BASE, timeout=10)

    print(f"Chatting in #{channel} as Mona Lisa (Ctrl-C to stop)")
    try:
        while True:
            for message in MESSAGES:
                resp = client.post("/message", json={
                    "message": message,
                    "sender": "Mona Lisa",
                    "channel": channel,
                    "user_id": user_id,
                })
                print(f"  sent ({resp.status_code}) {time.strftime('%H:%M:%S')}")
                time.sleep(3)
            time.sleep(20)
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    main()
