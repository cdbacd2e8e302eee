"""
Per-request access log: method, path, matched route, status and duration.

Query strings and headers are never logged; the CoinCap key travels in an
Authorization header and symbols are the only user input on these routes.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_failed method=%s path=%s duration_ms=%.1f",
                request.method, path, duration_ms,
                extra={"method": request.method, "path": path, "duration_ms": round(duration_ms, 1)},
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        # Route template ("/api/prices/{symbol}") groups requests for one endpoint.
        route = getattr(request.scope.get("route"), "path", None)
        logger.log(
            _level_for(response.status_code),
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            request.method, path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": path,
                "route": route,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 1),
            },
        )
        return response
