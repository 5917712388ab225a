"""
Request Middleware

Correlation ID: every HTTP request (webhooks included) gets an id that is
attached to all log lines it produces and echoed back in X-Request-ID.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.shared.core.logging import set_correlation_id

logger = logging.getLogger("http")

REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to each request.

    - Reuses an incoming X-Request-ID header when the caller sends one
    - Otherwise generates req-xxxxxxxx
    - Logs method, path, status and duration once the response is ready
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = set_correlation_id(request.headers.get(REQUEST_ID_HEADER))
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)"
        )
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response
