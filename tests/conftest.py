"""Shared pytest configuration and fixtures for FileSentry tests.

Sets environment variables before any filesentry module is imported, so that
``filesentry.config.get_settings()`` builds a settings object that needs no
external services.
"""
from __future__ import annotations

import os

# Set env vars before any filesentry module is imported
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")
os.environ.setdefault("RESULT_STORE_BACKEND", "memory")
os.environ.setdefault("CLAMAV_HOST", "")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest  # noqa: E402

from filesentry.core.models import FileSubmission  # noqa: E402


@pytest.fixture
def make_submission(tmp_path):
    """Return a factory writing *content* to ``tmp_path/name`` as a submission."""

    def _make(
        content: bytes = b"hello world\n",
        name: str = "sample.txt",
        mime_type: str = "text/plain",
    ) -> FileSubmission:
        path = tmp_path / name
        path.write_bytes(content)
        return FileSubmission(
            file_path=str(path),
            original_file_name=name,
            declared_mime_type=mime_type,
            size_bytes=len(content),
        )

    return _make
