"""ScanContext — per-scan state carried through the FileSentry orchestrator.

:class:`ScanContext` is created once per submission and passed to every
orchestrator stage (hash → AV → heuristics → reputation → aggregate).  Each
stage reads its inputs from the context and contributes its results through
the :class:`~filesentry.core.models.ScanRecord` it wraps, so stages never
call each other directly.

Usage::

    from filesentry.core.scan_context import ScanContext

    ctx = ScanContext.for_submission(submission)
    # ... run stages ...
    print(ctx.record.findings)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from filesentry.core.models import FileInfo, FileSubmission, ScanRecord


@dataclass
class ScanContext:
    """Mutable state for a single scan pass.

    Attributes:
        submission: The stored file handed to the orchestrator.
        record: The :class:`ScanRecord` being built.  Findings are appended
            to it stage by stage.
        stage: Name of the stage currently executing.
        errors: Human-readable error strings recorded by stages that failed.
            Errors from detector stages do not abort the scan.
        metadata: Arbitrary per-stage values (AV engine name and duration,
            heuristic risk level, ...).  Not persisted.
    """

    submission: FileSubmission
    record: ScanRecord
    stage: str = "created"
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_submission(cls, submission: FileSubmission, scan_id: str | None = None) -> ScanContext:
        info = FileInfo(
            name=submission.original_file_name,
            declared_mime_type=submission.declared_mime_type,
            size_bytes=submission.size_bytes,
        )
        record = ScanRecord(file_info=info, **({"scan_id": scan_id} if scan_id else {}))
        return cls(submission=submission, record=record)

    @property
    def scan_id(self) -> str:
        return self.record.scan_id
