# api/app/middleware/request_logging.py
"""
Request timing log. Auth itself lives in dependencies.py via Depends().
"""
from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

QUIET_PATHS = {"/health", "/v1/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:12]
        t0 = time.monotonic()
        response = await call_next(request)
        elapsed = (time.monotonic() - t0) * 1000

        response.headers["X-Request-Id"] = request_id
        if request.url.path not in QUIET_PATHS:
            logger.info(
                "req=%s %s %s -> %d (%.0fms)",
                request_id, request.method, request.url.path, response.status_code, elapsed,
            )
        return response
