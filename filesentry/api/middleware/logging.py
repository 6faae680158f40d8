"""Structured JSON request logging middleware for the FileSentry API.

Every request produces one JSON log line at ``INFO`` level once the response
is ready.  Each line carries a correlation ID taken from the incoming
``X-Correlation-ID`` header (falling back to ``X-Request-ID``, then a fresh
UUID v4).  The ID is stored on ``request.state.correlation_id`` for route
handlers and echoed in the ``X-Correlation-ID`` response header.

Scan endpoints attach ``request.state.scan_id`` once an id is known; it is
included in the log line so that request logs can be joined with the
orchestrator's ``scan_id=`` log entries.

Log entry format
----------------
::

    {
      "event": "http_request",
      "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
      "scan_id": "0b7c2f3e-3a5e-4b1a-9df0-5c1f5b7f4d2a",
      "method": "POST",
      "path": "/v1/scan",
      "status_code": 200,
      "duration_ms": 42.7
    }
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_CORRELATION_HEADERS: tuple[str, ...] = ("x-correlation-id", "x-request-id")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Structured JSON per-request logging middleware."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = self._extract_correlation_id(request)
        request.state.correlation_id = correlation_id

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 2)

        log_entry = {
            "event": "http_request",
            "correlation_id": correlation_id,
            "scan_id": getattr(request.state, "scan_id", None),
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
        logger.info(json.dumps(log_entry))

        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @staticmethod
    def _extract_correlation_id(request: Request) -> str:
        for header in _CORRELATION_HEADERS:
            value = request.headers.get(header, "").strip()
            if value:
                return value
        return str(uuid.uuid4())
