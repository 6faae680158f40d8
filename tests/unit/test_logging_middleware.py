"""Unit tests for filesentry/api/middleware/logging.py.

Tests are fully offline — no Redis or AV connections are required.

Coverage targets:
* Correlation ID taken from X-Correlation-ID, then X-Request-ID, else a UUID v4.
* Correlation ID stored on request.state and echoed in the response header.
* One structured JSON log entry per request with the required fields.
* scan_id populated when the route attaches one, null otherwise.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from filesentry.api.middleware.logging import RequestLoggingMiddleware

_LOGGER = "filesentry.api.middleware.logging"


# ---------------------------------------------------------------------------
# App factory helpers
# ---------------------------------------------------------------------------


def _make_app() -> FastAPI:
    app = FastAPI()

    @app.get("/v1/scan/{scan_id}/status")
    async def status(scan_id: str, request: Request) -> dict:
        request.state.scan_id = scan_id
        return {"correlation_id": getattr(request.state, "correlation_id", None)}

    @app.get("/healthz")
    async def health() -> dict:
        return {"status": "ok"}

    app.add_middleware(RequestLoggingMiddleware)
    return app


def _log_entries(caplog: Any) -> list[dict]:
    return [json.loads(r.message) for r in caplog.records if r.name == _LOGGER]


# ---------------------------------------------------------------------------
# Correlation ID
# ---------------------------------------------------------------------------


class TestCorrelationId:
    def test_uses_x_correlation_id_header(self) -> None:
        client = TestClient(_make_app())
        response = client.get("/healthz", headers={"X-Correlation-ID": "corr-1"})
        assert response.headers["x-correlation-id"] == "corr-1"

    def test_falls_back_to_x_request_id(self) -> None:
        client = TestClient(_make_app())
        response = client.get("/healthz", headers={"X-Request-ID": "req-1"})
        assert response.headers["x-correlation-id"] == "req-1"

    def test_correlation_header_wins(self) -> None:
        client = TestClient(_make_app())
        response = client.get(
            "/healthz",
            headers={"X-Correlation-ID": "primary", "X-Request-ID": "secondary"},
        )
        assert response.headers["x-correlation-id"] == "primary"

    def test_generates_uuid_when_absent(self) -> None:
        client = TestClient(_make_app())
        corr_id = client.get("/healthz").headers["x-correlation-id"]
        assert str(uuid.UUID(corr_id)) == corr_id

    def test_blank_header_is_ignored(self) -> None:
        client = TestClient(_make_app())
        corr_id = client.get("/healthz", headers={"X-Correlation-ID": "  "}).headers[
            "x-correlation-id"
        ]
        uuid.UUID(corr_id)

    def test_set_on_request_state(self) -> None:
        client = TestClient(_make_app())
        response = client.get("/v1/scan/abc/status", headers={"X-Correlation-ID": "state-id"})
        assert response.json()["correlation_id"] == "state-id"


# ---------------------------------------------------------------------------
# Structured log entry
# ---------------------------------------------------------------------------


class TestStructuredLogEntry:
    def test_required_fields(self, caplog: Any) -> None:
        client = TestClient(_make_app())
        with caplog.at_level(logging.INFO, logger=_LOGGER):
            client.get("/healthz", headers={"X-Correlation-ID": "log-id"})

        entries = _log_entries(caplog)
        assert len(entries) == 1
        entry = entries[0]
        assert entry["event"] == "http_request"
        assert entry["correlation_id"] == "log-id"
        assert entry["method"] == "GET"
        assert entry["path"] == "/healthz"
        assert entry["status_code"] == 200
        assert entry["duration_ms"] >= 0
        assert entry["scan_id"] is None

    def test_scan_id_from_route(self, caplog: Any) -> None:
        client = TestClient(_make_app())
        with caplog.at_level(logging.INFO, logger=_LOGGER):
            client.get("/v1/scan/scan-42/status")

        assert _log_entries(caplog)[-1]["scan_id"] == "scan-42"

    def test_error_status_logged(self, caplog: Any) -> None:
        client = TestClient(_make_app())
        with caplog.at_level(logging.INFO, logger=_LOGGER):
            client.get("/nowhere")

        assert _log_entries(caplog)[-1]["status_code"] == 404
