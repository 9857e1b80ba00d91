"""Access logging for the pedimento API, one JSON line per request.

The caller's X-Request-ID is reused when present so a document can be traced
across systems. Extraction uploads also log their declared size and strategy.
"""

import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("pedimento.access")

EXTRACT_PATH_SUFFIX = "/pedimentos/extract"


def _log_level(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def _upload_bytes(request: Request) -> int | None:
    length = request.headers.get("content-length")
    return int(length) if length and length.isdigit() else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        start_time = time.perf_counter()
        request.state.request_id = request_id

        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start_time) * 1000, 1)

        log_data = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "client": request.client.host if request.client else None,
        }
        if request.url.path.endswith(EXTRACT_PATH_SUFFIX):
            log_data["upload_bytes"] = _upload_bytes(request)
            log_data["strategy"] = request.query_params.get("strategy", "default")

        logger.log(_log_level(response.status_code), json.dumps(log_data))

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = str(duration_ms)
        return response
