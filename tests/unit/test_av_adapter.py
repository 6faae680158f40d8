"""Unit tests for filesentry/core/av_adapter.py.

Coverage targets:
* AVEngineAdapter is abstract — cannot be instantiated directly.
* AVScanResult enforces agreement between ``infected`` and ``signatures``.
* AVEngineError subclasses form a single hierarchy.
* A minimal concrete adapter satisfies the interface.
"""

from __future__ import annotations

import pytest

from filesentry.core.av_adapter import (
    AVEngineAdapter,
    AVEngineError,
    AVEngineScanError,
    AVEngineUnavailableError,
    AVScanResult,
    AVScanTimeoutError,
)


class _StaticAdapter(AVEngineAdapter):
    def __init__(self, signatures: tuple[str, ...] = ()) -> None:
        self._signatures = signatures

    async def scan(self, file_path: str) -> AVScanResult:
        return AVScanResult(
            infected=bool(self._signatures),
            signatures=self._signatures,
            engine_name=self.engine_name(),
        )

    async def ping(self) -> bool:
        return True

    def engine_name(self) -> str:
        return "static"


class TestAVScanResult:
    def test_clean_result(self) -> None:
        result = AVScanResult(infected=False)
        assert result.signatures == ()

    def test_infected_result(self) -> None:
        result = AVScanResult(infected=True, signatures=("Eicar-Test-Signature",))
        assert result.signatures == ("Eicar-Test-Signature",)

    def test_infected_without_signature_rejected(self) -> None:
        with pytest.raises(ValueError):
            AVScanResult(infected=True)

    def test_clean_with_signature_rejected(self) -> None:
        with pytest.raises(ValueError):
            AVScanResult(infected=False, signatures=("X",))

    def test_is_frozen(self) -> None:
        result = AVScanResult(infected=False)
        with pytest.raises(AttributeError):
            result.infected = True  # type: ignore[misc]


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "exc_type", [AVEngineUnavailableError, AVScanTimeoutError, AVEngineScanError]
    )
    def test_subclasses_av_engine_error(self, exc_type) -> None:
        assert issubclass(exc_type, AVEngineError)


class TestAdapterInterface:
    def test_abstract_base_cannot_be_instantiated(self) -> None:
        with pytest.raises(TypeError):
            AVEngineAdapter()  # type: ignore[abstract]

    async def test_concrete_adapter_scans(self) -> None:
        adapter = _StaticAdapter(("Win.Test.EICAR_HDB-1",))
        result = await adapter.scan("/tmp/whatever")
        assert result.infected is True
        assert result.engine_name == "static"
        assert await adapter.ping() is True
