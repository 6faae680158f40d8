"""Abstract plugin interface for anti-virus engine adapters.

All AV engine adapters (ClamAV today; commercial engines later) implement
the :class:`AVEngineAdapter` abstract base class.  The orchestrator depends
only on this interface; the concrete adapter is constructed by the process
bootstrap and injected.

Usage::

    from filesentry.core.av_adapter import AVEngineAdapter, AVScanResult

    class MyAdapter(AVEngineAdapter):
        async def scan(self, file_path: str) -> AVScanResult:
            ...

        async def ping(self) -> bool:
            ...

        def engine_name(self) -> str:
            return "my-engine"

Unlike a gateway that blocks on engine failure, FileSentry treats the AV
engine as one detector among several: adapters raise :class:`AVEngineError`
subclasses and the orchestrator records the stage as degraded.  Adapters must
never report a clean result for a scan they could not complete.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AVScanResult:
    """Result of a single AV engine scan invocation.

    Attributes:
        infected: ``True`` when one or more :attr:`signatures` matched.
        signatures: Signature names reported by the engine
            (e.g. ``"Win.Test.EICAR_HDB-1"``).  Always empty when
            :attr:`infected` is ``False``.
        engine_name: Identifier of the engine that produced this result.
        duration_ms: Approximate elapsed scan time in milliseconds.

    Raises:
        ValueError: On construction when the infected flag and signature
            list disagree.
    """

    infected: bool
    signatures: tuple[str, ...] = field(default_factory=tuple)
    engine_name: str = ""
    duration_ms: int | None = None

    def __post_init__(self) -> None:
        if self.infected and not self.signatures:
            raise ValueError("AVScanResult marked infected must carry at least one signature.")
        if not self.infected and self.signatures:
            raise ValueError("AVScanResult cannot be clean while signatures are present.")


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class AVEngineError(Exception):
    """Base exception for all AV engine adapter errors."""


class AVEngineUnavailableError(AVEngineError):
    """Raised when the AV engine daemon cannot be reached.

    :meth:`AVEngineAdapter.ping` must return ``False`` in the same scenario
    where this error would be raised by :meth:`AVEngineAdapter.scan`.
    """


class AVScanTimeoutError(AVEngineError):
    """Raised when a scan exceeds the configured upper time bound."""


class AVEngineScanError(AVEngineError):
    """Raised when the AV engine accepts a connection but returns an error.

    Examples:

    - The engine responds with an ``ERROR`` status.
    - The response payload is malformed or cannot be parsed.
    """


# ---------------------------------------------------------------------------
# Abstract adapter interface
# ---------------------------------------------------------------------------


class AVEngineAdapter(ABC):
    """Abstract base class for all AV engine adapters.

    Implementations must be safe to call from several asyncio tasks at
    once; the orchestrator bounds concurrency but does not serialise calls.
    """

    @abstractmethod
    async def scan(self, file_path: str) -> AVScanResult:
        """Scan the file at *file_path* and return a structured result.

        Raises:
            AVEngineUnavailableError: If the engine cannot be reached.
            AVScanTimeoutError: If the engine does not answer in time.
            AVEngineScanError: If the engine returns an error or a
                malformed response.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Return ``True`` if the engine is ready to accept scan requests.

        Must not raise; connectivity errors are reported as ``False``.
        """

    @abstractmethod
    def engine_name(self) -> str:
        """Return a short, stable, lower-case identifier for this engine."""
