"""Abstract interface for hash-reputation services.

A reputation service answers "what do other engines think of this SHA-256?".
It is strictly optional: the orchestrator only consults it when one was
configured, and every failure mode is treated as "no additional signal".

Usage::

    from filesentry.core.reputation import ReputationClient, reputation_detection

    record = await client.lookup(sha256)
    detection = reputation_detection(record, high_threshold=3)
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from filesentry.core.models import (
    Detection,
    DetectionSource,
    DetectionType,
    ReputationRecord,
    RiskLevel,
)


class ReputationError(Exception):
    """Base exception for reputation lookups."""


class ReputationNotConfiguredError(ReputationError):
    """Raised when the client has no credentials to query the service."""


class ReputationNotFoundError(ReputationError):
    """Raised when the service has never seen the hash."""


class ReputationServiceError(ReputationError):
    """Raised on network failures, timeouts and unexpected responses."""


class ReputationClient(ABC):
    """Abstract base class for hash-reputation clients."""

    @abstractmethod
    async def lookup(self, sha256: str) -> ReputationRecord:
        """Return the reputation of the file identified by *sha256*.

        Raises:
            ReputationNotConfiguredError: If the client has no credentials.
            ReputationNotFoundError: If the service does not know the hash.
            ReputationServiceError: On any transport or protocol failure.
        """

    async def aclose(self) -> None:
        """Release network resources held by the client."""


def reputation_detection(record: ReputationRecord, high_threshold: int) -> Detection | None:
    """Convert *record* into a detection, or ``None`` when no engine flagged it."""
    if record.positives <= 0 or record.total <= 0:
        return None
    risk = RiskLevel.HIGH if record.positives >= high_threshold else RiskLevel.MEDIUM
    return Detection(
        name=f"Reputation: {record.positives}/{record.total} engines flagged this file",
        type=DetectionType.MALWARE,
        confidence=min(1.0, record.positives / record.total),
        risk=risk,
        details=record.permalink,
        count=record.positives,
        source=DetectionSource.REPUTATION,
    )
