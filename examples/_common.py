"""
Shared helpers for chatrelay examples.

Handles the health check and URL plumbing so each example can focus on
its own flow.
"""

import os
import sys

import httpx

BASE = os.environ.get("CHATRELAY_API_URL", "http://localhost:3000").rstrip("/")
WS_URL = BASE.replace("https://", "wss://").replace("http://", "ws://") + "/ws"


def check_backend() -> None:
    """Verify the relay is reachable and healthy."""
    try:
        resp = httpx.get(f"{BASE}/api/v1/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Relay not reachable at {BASE}")
        print("Start it with:  chatrelay serve")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print(f"Relay {health['version']}: {health['connections']} connection(s), "
          f"{health['channels']} channel(s)")
