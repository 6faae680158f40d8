"""Unit tests for :mod:`filesentry.services.uploads`."""

from __future__ import annotations

import io
import os

import pytest
from starlette.datastructures import Headers, UploadFile

from filesentry.core.orchestrator import PayloadTooLargeError, ScanValidationError
from filesentry.services.uploads import UploadStager


def _upload(content: bytes, filename: str | None = "report.PDF", *, size=None, content_type="application/pdf"):
    headers = Headers({"content-type": content_type}) if content_type else None
    return UploadFile(io.BytesIO(content), size=size, filename=filename, headers=headers)


@pytest.fixture
def stager(tmp_path) -> UploadStager:
    return UploadStager(upload_dir=str(tmp_path / "staging"), max_bytes=16)


class TestStage:
    async def test_writes_file_under_random_name(self, stager, tmp_path) -> None:
        submission = await stager.stage(_upload(b"hello"))

        assert submission.original_file_name == "report.PDF"
        assert submission.declared_mime_type == "application/pdf"
        assert submission.size_bytes == 5
        assert os.path.dirname(submission.file_path) == str(tmp_path / "staging")
        assert os.path.basename(submission.file_path) != "report.PDF"
        assert submission.file_path.endswith(".pdf")
        with open(submission.file_path, "rb") as fh:
            assert fh.read() == b"hello"

    async def test_missing_content_type_defaults(self, stager) -> None:
        submission = await stager.stage(_upload(b"x", content_type=None))
        assert submission.declared_mime_type == "application/octet-stream"

    async def test_empty_name_rejected(self, stager) -> None:
        with pytest.raises(ScanValidationError):
            await stager.stage(_upload(b"x", filename="   "))

    async def test_declared_size_over_limit_rejected(self, stager, tmp_path) -> None:
        with pytest.raises(PayloadTooLargeError):
            await stager.stage(_upload(b"x", size=1000))
        assert not (tmp_path / "staging").exists()

    async def test_streamed_body_over_limit_removed(self, stager, tmp_path) -> None:
        with pytest.raises(PayloadTooLargeError) as exc_info:
            await stager.stage(_upload(b"x" * 17))
        assert exc_info.value.max_bytes == 16
        assert os.listdir(tmp_path / "staging") == []

    async def test_exact_limit_accepted(self, stager) -> None:
        submission = await stager.stage(_upload(b"x" * 16))
        assert submission.size_bytes == 16


class TestDiscard:
    async def test_removes_file(self, stager) -> None:
        submission = await stager.stage(_upload(b"hello"))
        stager.discard(submission)
        assert not os.path.exists(submission.file_path)

    async def test_missing_file_is_ignored(self, stager) -> None:
        submission = await stager.stage(_upload(b"hello"))
        stager.discard(submission)
        stager.discard(submission)
