"""Pydantic response schemas for the ``/v1/scan`` endpoints.

The core types in :mod:`filesentry.core.models` are plain dataclasses; these
models are the HTTP contract built from them via the ``from_*`` classmethods.

Usage::

    from filesentry.schemas.scan import ScanRecordOut

    return ScanRecordOut.from_record(record)
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from filesentry.core.models import (
    DetectionSource,
    DetectionType,
    RiskLevel,
    ScanHistoryItem,
    ScanRecord,
    ScanState,
    ScanStatus,
    ThreatLevel,
)


class DetectionOut(BaseModel):
    """A single finding."""

    name: str
    type: DetectionType
    confidence: float = Field(ge=0.0, le=1.0)
    risk: RiskLevel | None = None
    details: str | None = None
    count: int | None = None
    source: DetectionSource


class FileInfoOut(BaseModel):
    name: str
    type: str = Field(description="MIME type declared by the client")
    size: int = Field(ge=0, description="File size in bytes")


class FileHashesOut(BaseModel):
    md5: str
    sha1: str
    sha256: str


class ReputationOut(BaseModel):
    """Hash-reputation verdict, present only when a lookup succeeded."""

    positives: int
    total: int
    permalink: str | None = None


class ScanSummaryOut(BaseModel):
    summary: str
    risk_factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class ScanRecordOut(BaseModel):
    """Full result of a completed scan."""

    scan_id: str
    file_info: FileInfoOut
    file_hashes: FileHashesOut | None = None
    threat_level: ThreatLevel
    detections: list[DetectionOut]
    analysis: ScanSummaryOut | None = None
    reputation: ReputationOut | None = None
    degraded_stages: list[str] = Field(default_factory=list)
    upload_date: datetime
    scan_date: datetime | None = None
    scan_duration_seconds: float | None = None
    scan_completed: bool

    @classmethod
    def from_record(cls, record: ScanRecord) -> ScanRecordOut:
        hashes = record.file_hashes
        summary = record.summary
        reputation = record.reputation
        return cls(
            scan_id=record.scan_id,
            file_info=FileInfoOut(
                name=record.file_info.name,
                type=record.file_info.declared_mime_type,
                size=record.file_info.size_bytes,
            ),
            file_hashes=(
                FileHashesOut(md5=hashes.md5, sha1=hashes.sha1, sha256=hashes.sha256)
                if hashes is not None
                else None
            ),
            threat_level=record.threat_level,
            detections=[
                DetectionOut(
                    name=d.name,
                    type=d.type,
                    confidence=d.confidence,
                    risk=d.risk,
                    details=d.details,
                    count=d.count,
                    source=d.source,
                )
                for d in record.findings
            ],
            analysis=(
                ScanSummaryOut(
                    summary=summary.text,
                    risk_factors=list(summary.risk_factors),
                    recommendations=list(summary.recommendations),
                )
                if summary is not None
                else None
            ),
            reputation=(
                ReputationOut(
                    positives=reputation.positives,
                    total=reputation.total,
                    permalink=reputation.permalink,
                )
                if reputation is not None
                else None
            ),
            degraded_stages=list(record.degraded_stages),
            upload_date=record.upload_date,
            scan_date=record.scan_date,
            scan_duration_seconds=record.scan_duration_seconds,
            scan_completed=record.completed,
        )


class ScanHistoryItemOut(BaseModel):
    id: str
    file_name: str
    file_type: str
    scan_date: datetime
    threat_level: ThreatLevel
    detection_count: int = Field(ge=0)

    @classmethod
    def from_item(cls, item: ScanHistoryItem) -> ScanHistoryItemOut:
        return cls(
            id=item.id,
            file_name=item.file_name,
            file_type=item.file_type,
            scan_date=item.scan_date,
            threat_level=item.threat_level,
            detection_count=item.detection_count,
        )


class ScanHistoryResponse(BaseModel):
    """Completed scans, newest first."""

    scans: list[ScanHistoryItemOut]


class ScanStatusOut(BaseModel):
    scan_id: str
    status: ScanState
    progress: int = Field(ge=0, le=100)
    stage: str | None = None
    error: str | None = None

    @classmethod
    def from_status(cls, status: ScanStatus) -> ScanStatusOut:
        return cls(
            scan_id=status.scan_id,
            status=status.status,
            progress=status.progress,
            stage=status.stage,
            error=status.error,
        )


class ScanAcceptedOut(BaseModel):
    """Body of the ``202 Accepted`` response for asynchronous submissions."""

    scan_id: str
    status: Literal["pending"] = "pending"
    status_url: str
    result_url: str
