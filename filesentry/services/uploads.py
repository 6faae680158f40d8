"""UploadStager — write incoming uploads to the local upload directory.

Each upload is written under a random name (``{uuid}{ext}``) so that user
supplied file names never reach the filesystem.  The size limit is enforced
while streaming: the write is aborted and the partial file removed as soon
as the limit is crossed, so an oversize body is never fully stored.

Usage::

    stager = UploadStager(upload_dir=settings.upload_dir,
                          max_bytes=settings.max_upload_bytes)
    submission = await stager.stage(upload)   # fastapi.UploadFile
    try:
        ...
    finally:
        stager.discard(submission)
"""

from __future__ import annotations

import logging
import os
import uuid

from fastapi import UploadFile

from filesentry.core.models import FileSubmission
from filesentry.core.orchestrator import PayloadTooLargeError, ScanValidationError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_DEFAULT_MIME_TYPE = "application/octet-stream"


class UploadStager:
    """Stream uploads to disk and describe them as :class:`FileSubmission`.

    Args:
        upload_dir: Directory the staged files are written to.  Created on
            first use.
        max_bytes: Maximum number of bytes accepted for a single upload.
    """

    def __init__(self, upload_dir: str, max_bytes: int) -> None:
        self._upload_dir = upload_dir
        self._max_bytes = max_bytes

    async def stage(self, upload: UploadFile) -> FileSubmission:
        """Write *upload* to disk.

        Raises:
            ScanValidationError: If the upload has no file name.
            PayloadTooLargeError: If the body exceeds ``max_bytes``.
        """
        file_name = (upload.filename or "").strip()
        if not file_name:
            raise ScanValidationError("file name must not be empty")
        if upload.size is not None and upload.size > self._max_bytes:
            raise PayloadTooLargeError(upload.size, self._max_bytes)

        os.makedirs(self._upload_dir, exist_ok=True)
        _, ext = os.path.splitext(os.path.basename(file_name))
        path = os.path.join(self._upload_dir, f"{uuid.uuid4()}{ext.lower()}")

        written = 0
        try:
            with open(path, "wb") as fh:
                while chunk := await upload.read(_CHUNK_SIZE):
                    written += len(chunk)
                    if written > self._max_bytes:
                        raise PayloadTooLargeError(written, self._max_bytes)
                    fh.write(chunk)
        except BaseException:
            _remove_quietly(path)
            raise

        logger.debug("Upload staged: file=%s path=%s size=%d", file_name, path, written)
        return FileSubmission(
            file_path=path,
            original_file_name=file_name,
            declared_mime_type=upload.content_type or _DEFAULT_MIME_TYPE,
            size_bytes=written,
        )

    def discard(self, submission: FileSubmission) -> None:
        """Delete the staged file for *submission*, if it still exists."""
        _remove_quietly(submission.file_path)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove staged upload %s: %s", path, exc)
