"""API routes for file scanning and scan result retrieval.

Endpoints
---------
POST /v1/scan
    Upload a file (multipart field ``file``) for scanning.  ``mode=sync``
    (default) runs the full pipeline in the request and returns the result.
    ``mode=async`` validates and stages the upload, enqueues
    :func:`~filesentry.workers.scan_worker.scan_file_task` and returns
    ``202 Accepted`` with polling URLs.

GET  /v1/scan/history
    Completed scans, newest first.

GET  /v1/scan/results/{scan_id}
    Full result of a completed scan.

GET  /v1/scan/{scan_id}/status
    Polling status (``pending``/``processing``/``completed``/``failed``)
    with progress percentage.

Error mapping: validation failures → 400, oversize uploads → 413, unknown
scan ids → 404, hashing and internal failures → 500.  Detector outages are
not errors; they surface as ``degraded_stages`` on the result.

The async mode hands the staged file path to the worker, so API and worker
processes must share ``UPLOAD_DIR``.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from filesentry.core.hashing import HashingError
from filesentry.core.orchestrator import (
    InternalScanError,
    PayloadTooLargeError,
    ScanOrchestrator,
    ScanValidationError,
)
from filesentry.core.result_store import ResultStoreError, ScanNotFoundError
from filesentry.schemas.scan import (
    ScanAcceptedOut,
    ScanHistoryItemOut,
    ScanHistoryResponse,
    ScanRecordOut,
    ScanStatusOut,
)
from filesentry.services.uploads import UploadStager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/scan", tags=["scan"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> ScanOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Scan service is not ready")
    return orchestrator


def _get_stager(request: Request) -> UploadStager:
    stager = getattr(request.app.state, "upload_stager", None)
    if stager is None:
        raise HTTPException(status_code=503, detail="Scan service is not ready")
    return stager


def _validation_http_error(exc: ScanValidationError) -> HTTPException:
    if isinstance(exc, PayloadTooLargeError):
        return HTTPException(status_code=413, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("", response_model=ScanRecordOut, responses={202: {"model": ScanAcceptedOut}})
async def submit_scan(
    request: Request,
    file: Annotated[UploadFile | None, File(description="File to scan")] = None,
    mode: Annotated[
        Literal["sync", "async"],
        Query(description="'sync' waits for the result, 'async' returns 202 and a status URL"),
    ] = "sync",
):
    """Scan an uploaded file."""
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    orchestrator = _get_orchestrator(request)
    stager = _get_stager(request)

    try:
        submission = await stager.stage(file)
    except ScanValidationError as exc:
        raise _validation_http_error(exc) from exc
    finally:
        await file.close()

    if mode == "async":
        return await _submit_async(request, orchestrator, stager, submission)

    try:
        record = await orchestrator.submit(submission)
    except ScanValidationError as exc:
        raise _validation_http_error(exc) from exc
    except HashingError as exc:
        raise HTTPException(status_code=500, detail="File could not be read for hashing") from exc
    except InternalScanError as exc:
        request.state.scan_id = exc.scan_id
        raise HTTPException(status_code=500, detail="Scan failed due to an internal error") from exc
    finally:
        stager.discard(submission)

    request.state.scan_id = record.scan_id
    return ScanRecordOut.from_record(record)


async def _submit_async(request, orchestrator, stager, submission) -> JSONResponse:
    # Imported here so that the API can start without importing Celery
    # configuration until the first async submission.
    from filesentry.workers.scan_worker import scan_file_task

    try:
        scan_id = await orchestrator.mark_pending(submission)
    except ScanValidationError as exc:
        stager.discard(submission)
        raise _validation_http_error(exc) from exc
    except ResultStoreError as exc:
        stager.discard(submission)
        logger.error("Failed to record pending scan: file=%s error=%r", submission.original_file_name, exc)
        raise HTTPException(status_code=503, detail="Result store is unavailable") from exc

    request.state.scan_id = scan_id
    try:
        scan_file_task.delay(
            file_path=submission.file_path,
            file_name=submission.original_file_name,
            mime_type=submission.declared_mime_type,
            size_bytes=submission.size_bytes,
            scan_id=scan_id,
        )
    except Exception as exc:
        stager.discard(submission)
        logger.error("Failed to enqueue scan: scan_id=%s error=%r", scan_id, exc)
        raise HTTPException(status_code=503, detail="Scan queue is unavailable") from exc

    logger.info("Scan enqueued: scan_id=%s file=%s", scan_id, submission.original_file_name)
    body = ScanAcceptedOut(
        scan_id=scan_id,
        status_url=f"/v1/scan/{scan_id}/status",
        result_url=f"/v1/scan/results/{scan_id}",
    )
    return JSONResponse(status_code=202, content=body.model_dump())


@router.get("/history", response_model=ScanHistoryResponse)
async def scan_history(
    request: Request,
    limit: Annotated[int | None, Query(ge=1, le=1000, description="Maximum items")] = None,
) -> ScanHistoryResponse:
    """Return completed scans, newest first."""
    orchestrator = _get_orchestrator(request)
    items = await orchestrator.store.list(limit=limit)
    return ScanHistoryResponse(scans=[ScanHistoryItemOut.from_item(i) for i in items])


@router.get("/results/{scan_id}", response_model=ScanRecordOut)
async def get_scan_result(scan_id: str, request: Request) -> ScanRecordOut:
    """Return the full result of a completed scan."""
    orchestrator = _get_orchestrator(request)
    request.state.scan_id = scan_id
    try:
        record = await orchestrator.store.load(scan_id)
    except ScanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Scan {scan_id} not found") from exc
    return ScanRecordOut.from_record(record)


@router.get("/{scan_id}/status", response_model=ScanStatusOut)
async def get_scan_status(scan_id: str, request: Request) -> ScanStatusOut:
    """Return the polling status of a scan."""
    orchestrator = _get_orchestrator(request)
    request.state.scan_id = scan_id
    try:
        status = await orchestrator.get_status(scan_id)
    except ScanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Scan {scan_id} not found") from exc
    return ScanStatusOut.from_status(status)
