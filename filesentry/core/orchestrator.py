"""ScanOrchestrator — runs the FileSentry detection pipeline over one file.

:class:`ScanOrchestrator` sequences the detector stages for a submission:

1. **hashing**            — MD5/SHA-1/SHA-256 via :class:`~filesentry.core.hashing.HashComputer`
2. **antivirus**          — signature scan via an :class:`~filesentry.core.av_adapter.AVEngineAdapter`
3. **heuristics**         — rule-table scan via :class:`~filesentry.core.heuristic_scanner.HeuristicCodeScanner`
                            (only for configured code extensions)
4. **reputation**         — optional hash lookup via a :class:`~filesentry.core.reputation.ReputationClient`
5. **aggregating**        — threat level, summary, persistence

Every stage runs inside a named OpenTelemetry span.  Progress is published
to the result store so that callers can poll :meth:`ScanOrchestrator.get_status`.

**Failure policy**

* Hashing failure is fatal: the scan is marked ``failed`` and
  :class:`~filesentry.core.hashing.HashingError` propagates.
* Detector failures (AV, heuristics, reputation) are logged, the stage is
  recorded in ``record.degraded_stages`` and it contributes no findings.
  The scan still completes.
* Anything else is an :class:`InternalScanError`; the scan is marked
  ``failed`` and nothing is persisted.
* Cancellation marks the scan ``failed`` and re-raises; a cancelled scan is
  never persisted as completed.

Usage::

    orchestrator = ScanOrchestrator(
        store=InMemoryResultStore(),
        av_engine=ClamAVAdapter(host="clamav"),
        heuristic_scanner=HeuristicCodeScanner(),
    )
    record = await orchestrator.submit(
        FileSubmission("/srv/uploads/x.js", "x.js", "text/javascript", 1234)
    )
    print(record.threat_level, record.summary.text)
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Counter

from filesentry.core.aggregation import build_summary, compute_threat_level
from filesentry.core.av_adapter import AVEngineAdapter, AVEngineError, AVScanTimeoutError
from filesentry.core.hashing import HashComputer, HashingError
from filesentry.core.heuristic_scanner import HeuristicCodeScanner
from filesentry.core.models import (
    Detection,
    DetectionSource,
    DetectionType,
    FileSubmission,
    ScanRecord,
    ScanState,
    ScanStatus,
)
from filesentry.core.reputation import (
    ReputationClient,
    ReputationNotFoundError,
    reputation_detection,
)
from filesentry.core.result_store import ResultStore, ScanNotFoundError
from filesentry.core.scan_context import ScanContext

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(
    "filesentry.orchestrator",
    schema_url="https://opentelemetry.io/schemas/1.11.0",
)

# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

scans_total = Counter(
    "filesentry_scans_total",
    "Total number of scans that reached a terminal state",
    ["status", "threat_level"],
)

detector_failures_total = Counter(
    "filesentry_detector_failures_total",
    "Total number of detector stages that failed and contributed no findings",
    ["stage"],
)

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024


class ScanStage(str, Enum):
    """Linear stages of a single scan pass."""

    CREATED = "created"
    HASHING = "hashing"
    AV_SCANNING = "antivirus"
    HEURISTIC_SCANNING = "heuristics"
    REPUTATION_LOOKUP = "reputation"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


_STAGE_PROGRESS: dict[ScanStage, int] = {
    ScanStage.CREATED: 0,
    ScanStage.HASHING: 10,
    ScanStage.AV_SCANNING: 40,
    ScanStage.HEURISTIC_SCANNING: 70,
    ScanStage.REPUTATION_LOOKUP: 85,
    ScanStage.AGGREGATING: 95,
    ScanStage.COMPLETED: 100,
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ScanValidationError(ValueError):
    """Raised when a submission is rejected before any detector runs."""


class PayloadTooLargeError(ScanValidationError):
    """Raised when a submission exceeds the configured maximum size."""

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        super().__init__(
            f"file size {size_bytes} bytes exceeds the {max_bytes // (1024 * 1024)}MB limit"
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class InternalScanError(Exception):
    """Raised when a scan fails for an unexpected reason.

    Attributes:
        scan_id: Identifier of the failed scan.
        stage: Stage that was executing when the failure occurred.
    """

    def __init__(self, scan_id: str, stage: str, original: BaseException) -> None:
        super().__init__(f"scan {scan_id} failed at stage '{stage}': {original}")
        self.scan_id = scan_id
        self.stage = stage
        self.original = original


DetectorFn = Callable[[ScanContext], Awaitable[list[Detection]]]


# ---------------------------------------------------------------------------
# ScanOrchestrator
# ---------------------------------------------------------------------------


class ScanOrchestrator:
    """Sequences the detector stages over one submission at a time.

    All collaborators are injected so that tests can substitute mocks and so
    that connection lifecycles stay with the process bootstrap.  The
    instance holds no per-scan state and can serve many concurrent
    submissions; calls into the AV engine are bounded by a semaphore shared
    by all of them.

    Args:
        store: Result store used for persistence and status tracking.
        hash_computer: Digest calculator.  Defaults to a fresh
            :class:`HashComputer`.
        av_engine: AV adapter.  When ``None`` the antivirus stage is
            recorded as degraded.
        heuristic_scanner: Code scanner.  Defaults to a scanner with the
            built-in rules.
        reputation_client: Optional reputation client.  When ``None`` the
            reputation stage is skipped.
        max_upload_bytes: Maximum accepted submission size.
        av_timeout_seconds: Upper bound for one AV call.
        av_max_concurrency: Maximum concurrent AV calls.
        reputation_timeout_seconds: Upper bound for one reputation lookup.
        reputation_high_threshold: Positive count at which a reputation
            detection is high risk.
    """

    def __init__(
        self,
        *,
        store: ResultStore,
        hash_computer: HashComputer | None = None,
        av_engine: AVEngineAdapter | None = None,
        heuristic_scanner: HeuristicCodeScanner | None = None,
        reputation_client: ReputationClient | None = None,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        av_timeout_seconds: float = 60.0,
        av_max_concurrency: int = 4,
        reputation_timeout_seconds: float = 15.0,
        reputation_high_threshold: int = 3,
    ) -> None:
        self._store = store
        self._hash_computer = hash_computer or HashComputer()
        self._av_engine = av_engine
        self._heuristic_scanner = heuristic_scanner or HeuristicCodeScanner()
        self._reputation_client = reputation_client
        self._max_upload_bytes = max_upload_bytes
        self._av_timeout = av_timeout_seconds
        self._av_semaphore = asyncio.Semaphore(av_max_concurrency)
        self._reputation_timeout = reputation_timeout_seconds
        self._reputation_high_threshold = reputation_high_threshold

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    @property
    def store(self) -> ResultStore:
        return self._store

    async def aclose(self) -> None:
        """Release the reputation client and the result store."""
        if self._reputation_client is not None:
            await self._reputation_client.aclose()
        await self._store.close()

    async def antivirus_ready(self) -> bool | None:
        """Ping the AV engine; ``None`` when no engine is configured."""
        if self._av_engine is None:
            return None
        return await self._av_engine.ping()

    def _release_av_slot(self, task: asyncio.Future) -> None:
        self._av_semaphore.release()
        if not task.cancelled() and task.exception() is not None:
            # Already reported by the awaiting stage unless it timed out first.
            logger.debug("Antivirus call finished with error: %r", task.exception())

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def validate(self, submission: FileSubmission) -> None:
        """Reject a submission before any detector runs.

        Raises:
            PayloadTooLargeError: If the declared or on-disk size exceeds
                the configured maximum.
            ScanValidationError: If the name or size is invalid.
        """
        if not submission.original_file_name or not submission.original_file_name.strip():
            raise ScanValidationError("file name must not be empty")
        if submission.size_bytes < 0:
            raise ScanValidationError("file size must not be negative")
        if submission.size_bytes > self._max_upload_bytes:
            raise PayloadTooLargeError(submission.size_bytes, self._max_upload_bytes)
        try:
            actual = os.path.getsize(submission.file_path)
        except OSError:
            # Unreadable files are reported by the hashing stage.
            return
        if actual > self._max_upload_bytes:
            raise PayloadTooLargeError(actual, self._max_upload_bytes)

    async def mark_pending(self, submission: FileSubmission, *, scan_id: str | None = None) -> str:
        """Validate *submission*, allocate a scan id and publish ``pending``.

        Used by callers that hand the scan to a background worker and poll
        :meth:`get_status` instead of awaiting :meth:`submit`.  The worker
        passes the returned id back to :meth:`submit`.
        """
        self.validate(submission)
        scan_id = scan_id or str(uuid.uuid4())
        await self._store.set_status(
            ScanStatus(
                scan_id=scan_id,
                status=ScanState.PENDING,
                progress=0,
                stage=ScanStage.CREATED.value,
            )
        )
        logger.info(
            "Scan queued: scan_id=%s file=%s size=%d",
            scan_id,
            submission.original_file_name,
            submission.size_bytes,
        )
        return scan_id

    async def get_status(self, scan_id: str) -> ScanStatus:
        """Return the polling status of *scan_id*.

        Raises:
            ScanNotFoundError: If the scan is unknown to the store.
        """
        status = await self._store.get_status(scan_id)
        if status is not None:
            return status
        # Status entries expire; a persisted record is always completed.
        await self._store.load(scan_id)
        return ScanStatus(
            scan_id=scan_id,
            status=ScanState.COMPLETED,
            progress=100,
            stage=ScanStage.COMPLETED.value,
        )

    async def submit(self, submission: FileSubmission, *, scan_id: str | None = None) -> ScanRecord:
        """Run the full pipeline over *submission* and return the persisted record.

        Raises:
            ScanValidationError: If the submission is rejected up front.
            HashingError: If the file cannot be read for hashing.
            InternalScanError: On any unexpected failure.
        """
        self.validate(submission)
        context = ScanContext.for_submission(submission, scan_id=scan_id)
        record = context.record
        record.scan_date = datetime.now(timezone.utc)
        started = time.monotonic()

        with tracer.start_as_current_span("filesentry.scan", kind=trace.SpanKind.INTERNAL) as root_span:
            root_span.set_attribute("scan.id", record.scan_id)
            root_span.set_attribute("scan.file_name", submission.original_file_name)
            root_span.set_attribute("scan.mime_type", submission.declared_mime_type)
            root_span.set_attribute("scan.file_size_bytes", submission.size_bytes)

            try:
                await self._enter_stage(context, ScanStage.HASHING)
                with tracer.start_as_current_span("filesentry.hashing"):
                    record.file_hashes = await asyncio.to_thread(
                        self._hash_computer.compute_file_hashes, submission.file_path
                    )

                await self._run_detector(context, ScanStage.AV_SCANNING, self._stage_av_scan)
                await self._run_detector(
                    context, ScanStage.HEURISTIC_SCANNING, self._stage_heuristics
                )
                await self._run_detector(
                    context, ScanStage.REPUTATION_LOOKUP, self._stage_reputation
                )

                await self._enter_stage(context, ScanStage.AGGREGATING)
                with tracer.start_as_current_span("filesentry.aggregating"):
                    record.threat_level = compute_threat_level(record.findings)
                    record.summary = build_summary(
                        record.findings, record.threat_level, record.degraded_stages
                    )
                    record.scan_duration_seconds = round(time.monotonic() - started, 3)
                    record.complete()
                    await self._store.save(record)

            except HashingError as exc:
                root_span.record_exception(exc)
                root_span.set_status(Status(StatusCode.ERROR, str(exc)))
                await self._fail(context, f"hashing failed: {exc}")
                logger.error("Scan failed: scan_id=%s hashing error=%s", record.scan_id, exc)
                raise

            except asyncio.CancelledError:
                root_span.set_status(Status(StatusCode.ERROR, "cancelled"))
                await self._fail(context, "scan cancelled")
                logger.warning(
                    "Scan cancelled: scan_id=%s stage=%s", record.scan_id, context.stage
                )
                raise

            except Exception as exc:
                root_span.record_exception(exc)
                root_span.set_status(Status(StatusCode.ERROR, str(exc)))
                await self._fail(context, f"internal error: {type(exc).__name__}")
                logger.exception(
                    "Scan failed: scan_id=%s stage=%s", record.scan_id, context.stage
                )
                raise InternalScanError(record.scan_id, context.stage, exc) from exc

            await self._publish_status(
                ScanStatus(
                    scan_id=record.scan_id,
                    status=ScanState.COMPLETED,
                    progress=_STAGE_PROGRESS[ScanStage.COMPLETED],
                    stage=ScanStage.COMPLETED.value,
                )
            )
            context.stage = ScanStage.COMPLETED.value
            scans_total.labels(status="completed", threat_level=record.threat_level.value).inc()

            root_span.set_attribute("scan.threat_level", record.threat_level.value)
            root_span.set_attribute("scan.findings_count", len(record.findings))
            root_span.set_attribute("scan.degraded_stages", list(record.degraded_stages))

        logger.info(
            "Scan complete: scan_id=%s threat_level=%s findings=%d degraded=%s duration_s=%.3f",
            record.scan_id,
            record.threat_level.value,
            len(record.findings),
            record.degraded_stages,
            record.scan_duration_seconds,
        )
        return record

    # ------------------------------------------------------------------
    # Stage plumbing
    # ------------------------------------------------------------------

    async def _enter_stage(self, context: ScanContext, stage: ScanStage) -> None:
        context.stage = stage.value
        await self._publish_status(
            ScanStatus(
                scan_id=context.scan_id,
                status=ScanState.PROCESSING,
                progress=_STAGE_PROGRESS[stage],
                stage=stage.value,
            )
        )

    async def _run_detector(self, context: ScanContext, stage: ScanStage, fn: DetectorFn) -> None:
        """Run one detector stage; on failure record it as degraded.

        A detector's findings are appended in one step, after it has
        returned, so a failing detector never leaves partial findings.
        """
        await self._enter_stage(context, stage)
        record = context.record

        with tracer.start_as_current_span(f"filesentry.{stage.value}") as span:
            span.set_attribute("scan.id", record.scan_id)
            step_start = time.monotonic()
            try:
                detections = await fn(context)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                record.degraded_stages.append(stage.value)
                context.errors.append(f"stage={stage.value} error={type(exc).__name__}: {exc}")
                detector_failures_total.labels(stage=stage.value).inc()
                logger.warning(
                    "Detector stage '%s' failed, continuing without it: scan_id=%s error=%r",
                    stage.value,
                    record.scan_id,
                    exc,
                )
                return

            record.add_findings(detections)
            record.threat_level = compute_threat_level(record.findings)
            span.set_attribute("stage.findings_count", len(detections))
            logger.debug(
                "Detector stage '%s' complete: scan_id=%s findings=%d duration_ms=%d",
                stage.value,
                record.scan_id,
                len(detections),
                int((time.monotonic() - step_start) * 1000),
            )

    async def _fail(self, context: ScanContext, error: str) -> None:
        scans_total.labels(status="failed", threat_level="none").inc()
        failed_stage = context.stage
        context.stage = ScanStage.FAILED.value
        await self._publish_status(
            ScanStatus(
                scan_id=context.scan_id,
                status=ScanState.FAILED,
                progress=_STAGE_PROGRESS.get(ScanStage(failed_stage), 0),
                stage=failed_stage,
                error=error,
            )
        )

    async def _publish_status(self, status: ScanStatus) -> None:
        """Write *status* to the store; a failed write never fails the scan."""
        try:
            await self._store.set_status(status)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Could not publish scan status: scan_id=%s status=%s error=%r",
                status.scan_id,
                status.status.value,
                exc,
            )

    # ------------------------------------------------------------------
    # Detector stages
    # ------------------------------------------------------------------

    async def _stage_av_scan(self, context: ScanContext) -> list[Detection]:
        if self._av_engine is None:
            raise AVEngineError("no antivirus engine configured")

        # The slot is released when the engine call itself finishes, not when
        # we stop waiting for it: a timed-out clamd call keeps its connection
        # open in a worker thread until the daemon answers.
        await self._av_semaphore.acquire()
        scan_task = asyncio.ensure_future(self._av_engine.scan(context.submission.file_path))
        scan_task.add_done_callback(self._release_av_slot)
        try:
            result = await asyncio.wait_for(asyncio.shield(scan_task), timeout=self._av_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Antivirus scan timed out; slot held until the engine answers: scan_id=%s",
                context.scan_id,
            )
            raise AVScanTimeoutError(
                f"antivirus scan exceeded {self._av_timeout}s"
            ) from exc

        engine = result.engine_name or self._av_engine.engine_name()
        context.metadata["av_engine"] = engine
        context.metadata["av_duration_ms"] = result.duration_ms
        if not result.infected:
            return []

        logger.warning(
            "Antivirus flagged %d signature(s): scan_id=%s engine=%s",
            len(result.signatures),
            context.scan_id,
            engine,
        )
        return [
            Detection(
                name=signature,
                type=DetectionType.MALWARE,
                confidence=1.0,
                details=f"Detected by {engine}",
                source=DetectionSource.ANTIVIRUS,
            )
            for signature in result.signatures
        ]

    async def _stage_heuristics(self, context: ScanContext) -> list[Detection]:
        name = context.submission.original_file_name
        if not self._heuristic_scanner.is_code_file(name):
            logger.debug(
                "Heuristic stage skipped: %s is not a code file (scan_id=%s)",
                name,
                context.scan_id,
            )
            return []

        result = await asyncio.to_thread(
            self._heuristic_scanner.scan_file, context.submission.file_path
        )
        context.metadata["heuristic_risk_level"] = result.risk_level.value
        context.metadata["obfuscated"] = result.obfuscated
        return list(result.threats)

    async def _stage_reputation(self, context: ScanContext) -> list[Detection]:
        if self._reputation_client is None:
            return []

        hashes = context.record.file_hashes
        if hashes is None:
            raise RuntimeError(f"reputation lookup before hashing for scan {context.scan_id}")
        try:
            record = await asyncio.wait_for(
                self._reputation_client.lookup(hashes.sha256),
                timeout=self._reputation_timeout,
            )
        except ReputationNotFoundError:
            logger.info(
                "Reputation service has no report: scan_id=%s sha256=%s",
                context.scan_id,
                hashes.sha256,
            )
            return []

        context.record.reputation = record
        detection = reputation_detection(record, self._reputation_high_threshold)
        return [detection] if detection is not None else []


__all__ = [
    "InternalScanError",
    "PayloadTooLargeError",
    "ScanNotFoundError",
    "ScanOrchestrator",
    "ScanStage",
    "ScanValidationError",
]
