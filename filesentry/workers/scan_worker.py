"""Celery scan worker — background file scanning via ScanOrchestrator.

:func:`scan_file_task` runs :meth:`ScanOrchestrator.submit` for a file that
the API has already validated and staged under ``UPLOAD_DIR`` and for which
it has published a ``pending`` status.  Clients poll
``GET /v1/scan/{scan_id}/status`` and fetch the result from
``GET /v1/scan/results/{scan_id}`` once it is ``completed``.

**Retry policy**

Only failures that may succeed on a second attempt are retried: a result
store that could not be reached.  The countdown doubles after each attempt
(2 s, 4 s, 8 s).  Detector outages never reach this layer; the orchestrator
already records them as degraded stages and completes the scan.

Hashing failures (the staged file vanished or is unreadable), validation
failures and internal errors are terminal: the orchestrator has already set
the status to ``failed`` and the task returns a ``failed`` result.

The staged file is removed once the task reaches a terminal state.

**Orchestrator construction**

The orchestrator is built inside each task invocation so that configuration
is read from :data:`~filesentry.config.settings` when the task runs rather
than at import time.  Tests patch :func:`_build_orchestrator`.

**Usage**::

    from filesentry.workers.scan_worker import scan_file_task

    scan_file_task.delay(
        file_path="/srv/uploads/7a1c...js",
        file_name="widget.js",
        mime_type="text/javascript",
        size_bytes=1834,
        scan_id=scan_id,
    )

**Starting a worker**::

    celery -A filesentry.celery_app worker --loglevel=info -Q filesentry
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from filesentry.bootstrap import build_orchestrator
from filesentry.celery_app import celery_app
from filesentry.config import settings
from filesentry.core.hashing import HashingError
from filesentry.core.models import FileSubmission
from filesentry.core.orchestrator import (
    InternalScanError,
    ScanOrchestrator,
    ScanValidationError,
)
from filesentry.core.result_store import DuplicateScanError, ResultStoreError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Maximum number of automatic retries for transient failures.
_MAX_RETRIES: int = 3

#: Base retry countdown in seconds; doubles on each successive attempt.
_RETRY_BASE_SECONDS: int = 2


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_orchestrator() -> ScanOrchestrator:
    """Construct a :class:`ScanOrchestrator` from settings.

    ClamAV is included when a host or socket path is configured and
    VirusTotal only when an API key is set.
    """
    return build_orchestrator(settings)


async def _run_scan(submission: FileSubmission, scan_id: str) -> dict[str, Any]:
    orchestrator = _build_orchestrator()
    try:
        record = await orchestrator.submit(submission, scan_id=scan_id)
    finally:
        await orchestrator.aclose()
    return {
        "scan_id": record.scan_id,
        "status": "completed",
        "threat_level": record.threat_level.value,
        "findings_count": len(record.findings),
        "degraded_stages": list(record.degraded_stages),
    }


def _failed_result(scan_id: str, error: str) -> dict[str, Any]:
    return {
        "scan_id": scan_id,
        "status": "failed",
        "threat_level": None,
        "findings_count": 0,
        "degraded_stages": [],
        "error": error,
    }


def _discard(file_path: str) -> None:
    try:
        os.remove(file_path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("scan_file_task: could not remove staged file %s: %s", file_path, exc)


# ---------------------------------------------------------------------------
# Celery tasks
# ---------------------------------------------------------------------------


@celery_app.task(
    name="filesentry.workers.scan_worker.scan_file_task",
    bind=True,
    max_retries=_MAX_RETRIES,
    acks_late=True,
    reject_on_worker_lost=True,
)
def scan_file_task(
    self: Any,
    *,
    file_path: str,
    file_name: str,
    mime_type: str,
    size_bytes: int,
    scan_id: str,
) -> dict[str, Any]:
    """Celery task: scan one staged file through the FileSentry pipeline.

    Args:
        file_path: Path of the staged upload.
        file_name: Original client-supplied file name.
        mime_type: Client-declared MIME type.
        size_bytes: Size of the staged file in bytes.
        scan_id: Id allocated by the API when the scan was queued.

    Returns:
        A dict with ``scan_id``, ``status`` (``completed``/``failed``),
        ``threat_level``, ``findings_count`` and ``degraded_stages``; failed
        results also carry ``error``.

    Raises:
        :exc:`celery.exceptions.Retry`: When the result store is unreachable
            (up to :data:`_MAX_RETRIES` retries).
    """
    submission = FileSubmission(
        file_path=file_path,
        original_file_name=file_name,
        declared_mime_type=mime_type,
        size_bytes=size_bytes,
    )

    try:
        result = asyncio.run(_run_scan(submission, scan_id))

    except (ScanValidationError, HashingError) as exc:
        logger.warning("scan_file_task: scan rejected (no retry): scan_id=%s error=%s", scan_id, exc)
        _discard(file_path)
        return _failed_result(scan_id, str(exc))

    except InternalScanError as exc:
        original = exc.original
        if isinstance(original, DuplicateScanError):
            # An earlier attempt already persisted this scan.
            logger.info("scan_file_task: scan already persisted: scan_id=%s", scan_id)
            _discard(file_path)
            return {"scan_id": scan_id, "status": "completed"}
        if isinstance(original, (ResultStoreError, ConnectionError, TimeoutError)):
            countdown = _RETRY_BASE_SECONDS * (2 ** self.request.retries)
            logger.warning(
                "scan_file_task: transient error, retry %d/%d in %ds: scan_id=%s error=%r",
                self.request.retries + 1,
                _MAX_RETRIES,
                countdown,
                scan_id,
                original,
            )
            if self.request.retries < _MAX_RETRIES:
                raise self.retry(exc=exc, countdown=countdown)
        logger.error("scan_file_task: scan failed: scan_id=%s error=%r", scan_id, exc)
        _discard(file_path)
        return _failed_result(scan_id, str(exc))

    _discard(file_path)
    logger.info(
        "scan_file_task: complete scan_id=%s threat_level=%s findings=%d",
        result["scan_id"],
        result["threat_level"],
        result["findings_count"],
    )
    return result
