"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: There is no auth layer — the relay trusts whoever can reach its
HTTP port to publish. The chat demo routes (POST /message, GET /test)
live at the root because the browser client posts there; everything
else is versioned under /api/v1.
"""

from fastapi import APIRouter

from chatrelay.api.channels import router as channels_router
from chatrelay.api.health import router as health_router
from chatrelay.api.messages import demo_router, router as messages_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(messages_router, tags=["events"])
api_router.include_router(channels_router, tags=["channels"])

__all__ = ["api_router", "demo_router"]
