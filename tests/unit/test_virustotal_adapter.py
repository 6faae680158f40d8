"""Unit tests for the VirusTotal reputation adapter and reputation helpers.

HTTP traffic is served by :class:`httpx.MockTransport`; no network access is
required.
"""

from __future__ import annotations

import httpx
import pytest

from filesentry.core.adapters.virustotal_adapter import VirusTotalAdapter
from filesentry.core.models import DetectionSource, DetectionType, ReputationRecord, RiskLevel
from filesentry.core.reputation import (
    ReputationNotConfiguredError,
    ReputationNotFoundError,
    ReputationServiceError,
    reputation_detection,
)

_SHA256 = "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"


def _report(malicious: int = 5, harmless: int = 60, undetected: int = 5) -> dict:
    return {
        "data": {
            "id": _SHA256,
            "attributes": {
                "last_analysis_stats": {
                    "malicious": malicious,
                    "suspicious": 0,
                    "harmless": harmless,
                    "undetected": undetected,
                }
            },
        }
    }


def _adapter(handler, api_key: str | None = "test-key") -> VirusTotalAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VirusTotalAdapter(api_key, base_url="https://vt.test/api/v3", http_client=client)


# ---------------------------------------------------------------------------
# VirusTotalAdapter.lookup
# ---------------------------------------------------------------------------


class TestLookup:
    async def test_successful_lookup(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_report())

        record = await _adapter(handler).lookup(_SHA256)

        assert record.positives == 5
        assert record.total == 70
        assert record.permalink == f"https://www.virustotal.com/gui/file/{_SHA256}"
        assert seen[0].url.path == f"/api/v3/files/{_SHA256}"
        assert seen[0].headers["x-apikey"] == "test-key"

    async def test_unknown_hash_raises_not_found(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(404, json={"error": {}}))
        with pytest.raises(ReputationNotFoundError):
            await adapter.lookup(_SHA256)

    @pytest.mark.parametrize("status", [401, 429, 500, 503])
    async def test_error_status_raises_service_error(self, status: int) -> None:
        adapter = _adapter(lambda request: httpx.Response(status))
        with pytest.raises(ReputationServiceError):
            await adapter.lookup(_SHA256)

    async def test_network_error_raises_service_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ReputationServiceError):
            await _adapter(handler).lookup(_SHA256)

    async def test_malformed_body_raises_service_error(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, json={"data": {}}))
        with pytest.raises(ReputationServiceError):
            await adapter.lookup(_SHA256)

    async def test_missing_api_key_raises_not_configured(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, json=_report()), api_key=None)
        with pytest.raises(ReputationNotConfiguredError):
            await adapter.lookup(_SHA256)

    async def test_aclose_keeps_injected_client_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        adapter = VirusTotalAdapter("k", http_client=client)
        await adapter.aclose()
        assert client.is_closed is False
        await client.aclose()


# ---------------------------------------------------------------------------
# reputation_detection
# ---------------------------------------------------------------------------


class TestReputationDetection:
    def test_no_positives_gives_no_detection(self) -> None:
        assert reputation_detection(ReputationRecord(positives=0, total=70), 3) is None

    def test_positives_at_threshold_are_high(self) -> None:
        record = ReputationRecord(positives=3, total=60, permalink="https://vt/x")
        d = reputation_detection(record, 3)
        assert d is not None
        assert d.risk is RiskLevel.HIGH
        assert d.type is DetectionType.MALWARE
        assert d.source is DetectionSource.REPUTATION
        assert d.confidence == pytest.approx(0.05)
        assert d.details == "https://vt/x"
        assert d.count == 3

    def test_positives_below_threshold_are_medium(self) -> None:
        d = reputation_detection(ReputationRecord(positives=1, total=60), 3)
        assert d is not None
        assert d.risk is RiskLevel.MEDIUM
