"""
Observability helpers.

Logging setup for the delivery_tracking logger tree and a middleware that
tags every request with a correlation ID and logs one line per request.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("delivery_tracking.http")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
CORRELATION_HEADER = "X-Correlation-ID"


def configure_logging(level: str = "INFO") -> None:
    """Install the service log format on the delivery_tracking logger tree."""
    root = logging.getLogger("delivery_tracking")
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Propagates the caller's X-Correlation-ID (or mints one), reports the
    handling time in X-Process-Time and logs the outcome. Courier webhook
    calls are logged like any other request, so dropped events can be
    traced back to the courier's delivery attempt.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s -> %d in %.2fms (correlation_id=%s, client=%s)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            correlation_id,
            request.client.host if request.client else "unknown",
        )
        return response
