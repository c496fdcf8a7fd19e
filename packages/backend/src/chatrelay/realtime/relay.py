"""Relay — builds and owns one complete set of relay components.

Learn: There are no module-level singletons. The app lifespan builds a
Relay, stores it on app.state, and route handlers reach it through the
get_relay dependency. Tests build their own Relay per test.
"""

from starlette.requests import HTTPConnection

from chatrelay.config import Settings
from chatrelay.realtime.delivery import DeliveryEngine
from chatrelay.realtime.directory import ChannelDirectory
from chatrelay.realtime.gateway import IngressGateway
from chatrelay.realtime.registry import ConnectionRegistry
from chatrelay.realtime.session import SessionManager


class Relay:
    """Registry, directory, engine, sessions and gateway, wired together."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.directory = ChannelDirectory()
        self.registry = ConnectionRegistry(self.directory)
        self.engine = DeliveryEngine(self.registry, self.directory)
        self.sessions = SessionManager(
            self.registry,
            self.directory,
            self.engine,
            max_channels_per_connection=settings.max_channels_per_connection,
            max_channel_name_length=settings.max_channel_name_length,
            notify_subscription_count=settings.notify_subscription_count,
        )
        # A failed send tears the recipient down via the abort path.
        self.engine.on_failure = self.sessions.abort_session
        self.gateway = IngressGateway(
            self.engine,
            self.sessions,
            max_payload_bytes=settings.max_payload_bytes,
        )

    async def shutdown(self) -> None:
        """Close every open connection."""
        for connection in self.registry.connections():
            await self.sessions.close_session(connection.id)


def get_relay(request: HTTPConnection) -> Relay:
    """FastAPI dependency — works for both HTTP and WebSocket routes."""
    return request.app.state.relay
