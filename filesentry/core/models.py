"""Scan record data model and its versioned (de)serialisation.

A :class:`ScanRecord` is created when a submission is accepted, mutated only
by the :class:`~filesentry.core.orchestrator.ScanOrchestrator` during its
single pass, and frozen by :meth:`ScanRecord.complete`.  After that it is
persisted once and only ever read back.

Records are stored as plain JSON dicts produced by :func:`record_to_dict`.
Every dict carries ``schema_version`` so that :func:`record_from_dict` can
keep loading records written by earlier releases, including the legacy
loosely-typed blob (treated as version ``0``).

Usage::

    from filesentry.core.models import Detection, DetectionType, RiskLevel

    d = Detection(
        name="Unsafe Eval",
        type=DetectionType.CODE_EXECUTION,
        confidence=0.9,
        risk=RiskLevel.HIGH,
        count=3,
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

#: Current on-disk schema version written by :func:`record_to_dict`.
SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ThreatLevel(str, Enum):
    """Aggregate verdict for a whole scan, ordered ``none < low < medium < high``."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _THREAT_ORDER[self]


_THREAT_ORDER = {
    ThreatLevel.NONE: 0,
    ThreatLevel.LOW: 1,
    ThreatLevel.MEDIUM: 2,
    ThreatLevel.HIGH: 3,
}


class RiskLevel(str, Enum):
    """Risk attached to an individual heuristic or reputation detection."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def to_threat_level(self) -> ThreatLevel:
        return ThreatLevel(self.value)


class DetectionType(str, Enum):
    """Category tag of a :class:`Detection`."""

    MALWARE = "malware"
    SUSPICIOUS = "suspicious"
    PHISHING = "phishing"
    ADWARE = "adware"
    SPYWARE = "spyware"
    OBFUSCATION = "obfuscation"
    CODE_EXECUTION = "code-execution"
    XSS = "xss"
    DATA_LEAKAGE = "data-leakage"
    FILE_ACCESS = "file-access"
    PROTOTYPE_POLLUTION = "prototype-pollution"
    CRYPTO = "crypto"
    NETWORK = "network"
    OTHER = "other"


class DetectionSource(str, Enum):
    """Detector stage that produced a :class:`Detection`."""

    ANTIVIRUS = "antivirus"
    HEURISTIC = "heuristic"
    REPUTATION = "reputation"


class ScanState(str, Enum):
    """Externally visible status of a scan for polling callers."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RecordFrozenError(RuntimeError):
    """Raised when findings are added to a record that has been completed."""


class UnsupportedSchemaVersion(ValueError):
    """Raised when a stored record carries a schema version this build cannot read."""


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Detection:
    """A single finding contributed by one detector.

    Attributes:
        name: Detector-assigned label (virus signature name or heuristic
            rule name).
        type: Category tag.
        confidence: Detector confidence in ``[0, 1]``.
        risk: Risk level for heuristic and reputation detections.  ``None``
            for antivirus detections, which always imply ``high``.
        details: Optional free-text explanation (e.g. match count).
        count: Number of pattern matches for heuristic detections.
        source: Detector stage that produced this detection.
    """

    name: str
    type: DetectionType
    confidence: float
    risk: RiskLevel | None = None
    details: str | None = None
    count: int | None = None
    source: DetectionSource = DetectionSource.HEURISTIC

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence!r}")

    @property
    def severity(self) -> ThreatLevel:
        """Severity this detection contributes to the aggregate threat level."""
        if self.risk is None:
            return ThreatLevel.HIGH
        return self.risk.to_threat_level()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "confidence": self.confidence,
            "source": self.source.value,
        }
        if self.risk is not None:
            data["risk"] = self.risk.value
        if self.details is not None:
            data["details"] = self.details
        if self.count is not None:
            data["count"] = self.count
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Detection:
        raw_type = data.get("type", DetectionType.OTHER.value)
        try:
            det_type = DetectionType(raw_type)
        except ValueError:
            det_type = DetectionType.OTHER
        risk = data.get("risk")
        return cls(
            name=data["name"],
            type=det_type,
            confidence=float(data.get("confidence", 0.0)),
            risk=RiskLevel(risk) if risk else None,
            details=data.get("details"),
            count=data.get("count"),
            source=DetectionSource(data.get("source", DetectionSource.HEURISTIC.value)),
        )


@dataclass(frozen=True)
class FileInfo:
    """Submission metadata captured once at upload time."""

    name: str
    declared_mime_type: str
    size_bytes: int


@dataclass(frozen=True)
class FileHashes:
    """Lower-case hex digests of the file content."""

    md5: str
    sha1: str
    sha256: str


@dataclass(frozen=True)
class ReputationRecord:
    """Result of a hash-reputation lookup.

    Attributes:
        positives: Number of engines that flagged the hash.
        total: Number of engines that reported on the hash.
        permalink: Link to the full report on the reputation service.
    """

    positives: int
    total: int
    permalink: str | None = None


@dataclass(frozen=True)
class ScanSummary:
    """Narrative explanation generated from the final findings."""

    text: str
    risk_factors: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileSubmission:
    """A stored file handed to the pipeline.

    Attributes:
        file_path: Path of the staged file on local disk.
        original_file_name: Name declared by the uploader.
        declared_mime_type: MIME type declared by the uploader.
        size_bytes: Declared size in bytes.
    """

    file_path: str
    original_file_name: str
    declared_mime_type: str
    size_bytes: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Root aggregate
# ---------------------------------------------------------------------------


@dataclass
class ScanRecord:
    """Root aggregate for one submitted file.

    ``findings`` is a list while the scan is in flight and a tuple once
    :meth:`complete` has been called.  Use :meth:`add_findings` rather than
    mutating the list directly so that a detector's output is appended in
    one step.
    """

    file_info: FileInfo
    scan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    file_hashes: FileHashes | None = None
    findings: list[Detection] | tuple[Detection, ...] = field(default_factory=list)
    threat_level: ThreatLevel = ThreatLevel.NONE
    summary: ScanSummary | None = None
    reputation: ReputationRecord | None = None
    degraded_stages: list[str] = field(default_factory=list)
    upload_date: datetime = field(default_factory=_utcnow)
    scan_date: datetime | None = None
    scan_duration_seconds: float | None = None
    completed: bool = False

    def add_findings(self, detections: Iterable[Detection]) -> None:
        """Append one detector's output to the findings in a single step."""
        if self.completed:
            raise RecordFrozenError(f"scan {self.scan_id} is completed; findings are frozen")
        batch = list(detections)
        self.findings.extend(batch)  # type: ignore[union-attr]

    def complete(self) -> None:
        """Freeze the findings and mark the record completed."""
        self.findings = tuple(self.findings)
        self.completed = True

    def history_item(self) -> ScanHistoryItem:
        return ScanHistoryItem(
            id=self.scan_id,
            file_name=self.file_info.name,
            file_type=self.file_info.declared_mime_type,
            scan_date=self.scan_date or self.upload_date,
            threat_level=self.threat_level,
            detection_count=len(self.findings),
        )


@dataclass(frozen=True)
class ScanHistoryItem:
    """Lightweight per-scan summary used by history views."""

    id: str
    file_name: str
    file_type: str
    scan_date: datetime
    threat_level: ThreatLevel
    detection_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "scan_date": self.scan_date.isoformat(),
            "threat_level": self.threat_level.value,
            "detection_count": self.detection_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanHistoryItem:
        return cls(
            id=data["id"],
            file_name=data["file_name"],
            file_type=data["file_type"],
            scan_date=_parse_datetime(data["scan_date"]),
            threat_level=ThreatLevel(data["threat_level"]),
            detection_count=int(data["detection_count"]),
        )


@dataclass(frozen=True)
class ScanStatus:
    """Polling view of a scan in flight (or finished)."""

    scan_id: str
    status: ScanState
    progress: int = 0
    stage: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "status": self.status.value,
            "progress": self.progress,
            "stage": self.stage,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanStatus:
        return cls(
            scan_id=data["scan_id"],
            status=ScanState(data["status"]),
            progress=int(data.get("progress", 0)),
            stage=data.get("stage"),
            error=data.get("error"),
        )


# ---------------------------------------------------------------------------
# Versioned codec
# ---------------------------------------------------------------------------


def _parse_datetime(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_to_dict(record: ScanRecord) -> dict[str, Any]:
    """Serialise *record* into a JSON-ready dict tagged with :data:`SCHEMA_VERSION`."""
    hashes = record.file_hashes
    summary = record.summary
    reputation = record.reputation
    return {
        "schema_version": SCHEMA_VERSION,
        "scan_id": record.scan_id,
        "file_info": {
            "name": record.file_info.name,
            "declared_mime_type": record.file_info.declared_mime_type,
            "size_bytes": record.file_info.size_bytes,
        },
        "file_hashes": (
            {"md5": hashes.md5, "sha1": hashes.sha1, "sha256": hashes.sha256}
            if hashes is not None
            else None
        ),
        "findings": [d.to_dict() for d in record.findings],
        "threat_level": record.threat_level.value,
        "summary": (
            {
                "text": summary.text,
                "risk_factors": list(summary.risk_factors),
                "recommendations": list(summary.recommendations),
            }
            if summary is not None
            else None
        ),
        "reputation": (
            {
                "positives": reputation.positives,
                "total": reputation.total,
                "permalink": reputation.permalink,
            }
            if reputation is not None
            else None
        ),
        "degraded_stages": list(record.degraded_stages),
        "upload_date": record.upload_date.isoformat(),
        "scan_date": record.scan_date.isoformat() if record.scan_date else None,
        "scan_duration_seconds": record.scan_duration_seconds,
        "completed": record.completed,
    }


def record_from_dict(data: dict[str, Any]) -> ScanRecord:
    """Rebuild a :class:`ScanRecord` from a stored dict.

    Dicts without ``schema_version`` are treated as the legacy version ``0``
    blob and upgraded on the fly.

    Raises:
        UnsupportedSchemaVersion: If the dict was written by a newer schema.
    """
    version = data.get("schema_version", 0)
    if version == 0:
        return _record_from_legacy(data)
    if version != SCHEMA_VERSION:
        raise UnsupportedSchemaVersion(
            f"scan record schema_version {version!r} is not supported "
            f"(this build reads <= {SCHEMA_VERSION})"
        )

    info = data["file_info"]
    hashes = data.get("file_hashes")
    summary = data.get("summary")
    reputation = data.get("reputation")
    record = ScanRecord(
        scan_id=data["scan_id"],
        file_info=FileInfo(
            name=info["name"],
            declared_mime_type=info["declared_mime_type"],
            size_bytes=int(info["size_bytes"]),
        ),
        file_hashes=FileHashes(**hashes) if hashes else None,
        findings=[Detection.from_dict(d) for d in data.get("findings", [])],
        threat_level=ThreatLevel(data.get("threat_level", ThreatLevel.NONE.value)),
        summary=(
            ScanSummary(
                text=summary["text"],
                risk_factors=tuple(summary.get("risk_factors", ())),
                recommendations=tuple(summary.get("recommendations", ())),
            )
            if summary
            else None
        ),
        reputation=ReputationRecord(**reputation) if reputation else None,
        degraded_stages=list(data.get("degraded_stages", [])),
        upload_date=_parse_datetime(data["upload_date"]) or _utcnow(),
        scan_date=_parse_datetime(data.get("scan_date")),
        scan_duration_seconds=data.get("scan_duration_seconds"),
    )
    if data.get("completed"):
        record.complete()
    return record


def _record_from_legacy(data: dict[str, Any]) -> ScanRecord:
    """Upgrade the legacy untyped result blob.

    Legacy shape::

        {"scan_id": ..., "file_info": {"name", "type", "size"},
         "scanDate": ..., "scanCompleted": bool,
         "findings": {"threatLevel": ..., "detections": [...]}}
    """
    info = data.get("file_info", {})
    findings_blob = data.get("findings") or {}
    detections = [
        Detection.from_dict(
            {**d, "source": d.get("source", DetectionSource.ANTIVIRUS.value)}
        )
        for d in findings_blob.get("detections") or []
    ]
    raw_level = findings_blob.get("threatLevel", ThreatLevel.NONE.value)
    if raw_level == "clean":
        raw_level = ThreatLevel.NONE.value
    elif raw_level == "critical":
        raw_level = ThreatLevel.HIGH.value
    scan_date = _parse_datetime(data.get("scanDate"))
    record = ScanRecord(
        scan_id=data["scan_id"],
        file_info=FileInfo(
            name=info.get("name", ""),
            declared_mime_type=info.get("type", ""),
            size_bytes=int(info.get("size", 0)),
        ),
        findings=detections,
        threat_level=ThreatLevel(raw_level),
        upload_date=scan_date or _utcnow(),
        scan_date=scan_date,
    )
    if data.get("scanCompleted"):
        record.complete()
    return record
