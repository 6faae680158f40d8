"""ResultStore interface consumed by the orchestrator.

Finalised :class:`~filesentry.core.models.ScanRecord` objects are written
once and only read afterwards, so the interface has no update or delete
operations.  Scan status (used for polling while a scan is in flight) lives
in a separate key space on the same store and *is* overwritten as the scan
progresses.

Concrete implementations live in :mod:`filesentry.services.result_store`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from filesentry.core.models import ScanHistoryItem, ScanRecord, ScanStatus


class ResultStoreError(Exception):
    """Base exception for result store failures."""


class ScanNotFoundError(ResultStoreError):
    """Raised when no record (or status) exists for a scan id."""

    def __init__(self, scan_id: str) -> None:
        super().__init__(f"scan {scan_id!r} not found")
        self.scan_id = scan_id


class DuplicateScanError(ResultStoreError):
    """Raised when a record is saved twice under the same scan id."""

    def __init__(self, scan_id: str) -> None:
        super().__init__(f"scan {scan_id!r} has already been persisted")
        self.scan_id = scan_id


class ResultStore(ABC):
    """Write-once persistence for finalised scan records."""

    @abstractmethod
    async def save(self, record: ScanRecord) -> None:
        """Persist *record*.

        Raises:
            DuplicateScanError: If a record with the same id already exists.
        """

    @abstractmethod
    async def load(self, scan_id: str) -> ScanRecord:
        """Return the record stored under *scan_id*.

        Raises:
            ScanNotFoundError: If no record exists for *scan_id*.
        """

    @abstractmethod
    async def list(self, limit: int | None = None) -> list[ScanHistoryItem]:
        """Return history items for completed scans, newest first."""

    @abstractmethod
    async def set_status(self, status: ScanStatus) -> None:
        """Create or replace the polling status of a scan."""

    @abstractmethod
    async def get_status(self, scan_id: str) -> ScanStatus | None:
        """Return the polling status of *scan_id*, or ``None`` if unknown."""

    async def close(self) -> None:
        """Release connections held by the store."""
