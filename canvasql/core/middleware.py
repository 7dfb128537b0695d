"""Observability middleware: request IDs, logging, and metrics.

A caller-supplied X-Request-ID is kept so a canvas session can follow one
compile through the logs; otherwise a fresh id is generated. Health checks and
metric scrapes are counted but only logged at debug level.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from canvasql.core.metrics import http_request_duration_seconds, http_requests_total

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128
QUIET_PATHS = frozenset({"/health", "/health/live", "/metrics"})

logger = structlog.stdlib.get_logger("canvasql.http")


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
        return incoming
    return str(uuid.uuid4())


def _route_path(request: Request) -> str:
    # Route pattern (low cardinality), not the resolved path
    route = request.scope.get("route")
    return route.path if route else request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Binds request_id, logs requests, and records HTTP metrics."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _request_id(request)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        method = request.method
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            path = _route_path(request)
            http_requests_total.labels(method=method, path=path, status=500).inc()
            http_request_duration_seconds.labels(method=method, path=path).observe(
                time.perf_counter() - start
            )
            logger.exception("request_failed", method=method, path=path)
            structlog.contextvars.clear_contextvars()
            raise

        duration = time.perf_counter() - start
        status = response.status_code
        path = _route_path(request)

        http_requests_total.labels(method=method, path=path, status=status).inc()
        http_request_duration_seconds.labels(method=method, path=path).observe(duration)

        response.headers[REQUEST_ID_HEADER] = request_id

        log = logger.debug if path in QUIET_PATHS else logger.info
        log(
            "request_completed",
            method=method,
            path=path,
            status=status,
            duration_ms=round(duration * 1000, 2),
        )

        structlog.contextvars.clear_contextvars()
        return response
