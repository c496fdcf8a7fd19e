"""Test fixtures — a fresh relay per test, fake transports, HTTP clients.

Learn: Testing pattern for the relay:

1. Core tests build ChannelDirectory / ConnectionRegistry / SessionManager
   directly and drive them with FakeTransport, which records every frame
   and can be told to fail or to block mid-send.
2. HTTP tests use httpx ASGITransport against create_app(). ASGITransport
   does not run the lifespan, so the fixture installs a Relay on
   app.state itself.
3. WebSocket tests use Starlette's TestClient, which does run the lifespan.
"""

import asyncio
import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from chatrelay.config import Settings
from chatrelay.main import create_app
from chatrelay.realtime.errors import TransportFailure
from chatrelay.realtime.relay import Relay


class FakeTransport:
    """In-memory transport that records frames sent to it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []
        self.send_attempts = 0
        self.closed = False
        self.close_code = None
        self.gate: asyncio.Event | None = None

    async def send_text(self, data: str) -> None:
        self.send_attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail or self.closed:
            raise TransportFailure("fake transport failure")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code

    def events(self, name: str | None = None) -> list[dict]:
        return [f for f in self.sent if name is None or f["event"] == name]


@pytest.fixture()
def settings():
    return Settings(environment="development", log_level="WARNING")


@pytest.fixture()
def relay(settings):
    return Relay(settings)


@pytest.fixture()
def make_transport():
    return FakeTransport


@pytest.fixture()
def app(settings):
    return create_app(settings)


@pytest_asyncio.fixture()
async def client(app, relay):
    """HTTP client with a relay installed on app.state."""
    app.state.relay = relay
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
