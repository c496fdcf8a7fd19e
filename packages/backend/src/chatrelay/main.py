"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The lifespan builds the Relay (registry, directory, engine,
sessions, gateway) and tears every connection down on shutdown.
Middleware, CORS, routers and the optional static browser client are
all registered here.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from chatrelay import __version__
from chatrelay.api import api_router, demo_router
from chatrelay.config import Settings, get_settings
from chatrelay.events.types import MESSAGE_IN
from chatrelay.log import configure_logging
from chatrelay.realtime.delivery import MessageEvent
from chatrelay.realtime.relay import Relay

logger = structlog.get_logger()


def _log_chat_message(message: MessageEvent) -> None:
    logger.info(
        "message.received",
        channel=message.channel,
        sender=message.payload.get("sender"),
        origin=message.origin,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. The relay lives exactly as long as the app.
    """
    settings: Settings = app.state.settings
    logger.info(
        "chatrelay.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    relay = Relay(settings)
    relay.engine.bind(MESSAGE_IN, _log_chat_message)
    app.state.relay = relay

    yield

    logger.info("chatrelay.shutdown", connections=len(relay.registry))
    relay.engine.unbind(MESSAGE_IN, _log_chat_message)
    await relay.shutdown()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)

    app = FastAPI(
        title="chatrelay",
        description="Self-hosted channel relay for group chat",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ── Middleware stack ──────────────────────────────────────
    # Request flow: CORS → RequestId → handler

    from chatrelay.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    app.include_router(demo_router)

    from chatrelay.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    # Static browser client last, so it never shadows the API
    if settings.static_dir:
        static_dir = Path(settings.static_dir)
        if static_dir.is_dir():
            app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        else:
            logger.warning("chatrelay.static_dir_missing", path=str(static_dir))

    return app


# Default app instance (used by uvicorn: chatrelay.main:app)
app = create_app()
