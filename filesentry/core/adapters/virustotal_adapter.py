"""VirusTotal hash-reputation adapter.

Queries the VirusTotal v3 ``files`` endpoint for a SHA-256 and maps
``last_analysis_stats`` onto a :class:`~filesentry.core.models.ReputationRecord`.
Only the hash is ever sent; file content never leaves the host.

Args are usually taken from settings by the process bootstrap::

    adapter = VirusTotalAdapter(
        api_key=settings.virustotal_api_key,
        base_url=settings.virustotal_base_url,
        timeout=settings.reputation_timeout_seconds,
    )
    record = await adapter.lookup(sha256)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from filesentry.core.models import ReputationRecord
from filesentry.core.reputation import (
    ReputationClient,
    ReputationNotConfiguredError,
    ReputationNotFoundError,
    ReputationServiceError,
)

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://www.virustotal.com/api/v3"
_GUI_FILE_URL = "https://www.virustotal.com/gui/file/{sha256}"

#: Maximum seconds to wait for a single lookup.
_HTTP_TIMEOUT = 15.0


class VirusTotalAdapter(ReputationClient):
    """VirusTotal v3 file-report client.

    Args:
        api_key: VirusTotal API key.  An empty key makes every lookup raise
            :class:`ReputationNotConfiguredError`.
        base_url: API root, overridable for tests and proxies.
        timeout: Per-request timeout in seconds.
        http_client: Optional shared :class:`httpx.AsyncClient`.  When
            ``None`` a client is created lazily and closed by :meth:`aclose`.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = _DEFAULT_BASE_URL,
        timeout: float = _HTTP_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def lookup(self, sha256: str) -> ReputationRecord:
        if not self._api_key:
            raise ReputationNotConfiguredError("VirusTotal API key is not configured")

        url = f"{self._base_url}/files/{sha256}"
        try:
            response = await self._client().get(
                url,
                headers={"x-apikey": self._api_key, "Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.RequestError as exc:
            raise ReputationServiceError(f"VirusTotal request failed: {exc}") from exc

        if response.status_code == 404:
            raise ReputationNotFoundError(f"VirusTotal has no report for {sha256}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ReputationServiceError(
                f"VirusTotal returned HTTP {response.status_code} for {sha256}"
            ) from exc

        try:
            payload: dict[str, Any] = response.json()
            stats: dict[str, Any] = payload["data"]["attributes"]["last_analysis_stats"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ReputationServiceError(f"Malformed VirusTotal response for {sha256}") from exc

        positives = int(stats.get("malicious", 0))
        total = sum(int(v) for v in stats.values() if isinstance(v, int))
        record = ReputationRecord(
            positives=positives,
            total=total,
            permalink=_GUI_FILE_URL.format(sha256=sha256),
        )
        logger.info(
            "VirusTotal lookup: sha256=%s positives=%d total=%d",
            sha256,
            record.positives,
            record.total,
        )
        return record

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client
