"""Request ID + access log middleware.

Learn: Every HTTP request gets an id, either from the incoming
X-Request-ID header or a fresh uuid4. The id is bound to structlog's
contextvars so every log line written while handling the request
(including relay.published from the delivery engine) carries it, and it
is echoed back in the response header. One http.request line is logged
per request with its status and duration.

WebSocket upgrades bypass BaseHTTPMiddleware; connection ids play the
same role for those.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate a unique request ID, log each request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response: Response = await call_next(request)
        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response
