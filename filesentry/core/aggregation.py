"""Threat-level aggregation and narrative summary generation.

Both functions are pure: they depend only on the findings (and, for the
summary, the stages that could not run) so they can be re-evaluated at any
point of a scan and always give the same answer for the same input.

The threat level is the maximum severity over all findings using the
ordering ``none < low < medium < high``.  Antivirus detections carry no
risk and always count as ``high``.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from filesentry.core.models import Detection, ScanSummary, ThreatLevel

NO_ISSUES_SUMMARY = (
    "No issues detected. The file did not match any known malware signatures "
    "or suspicious code patterns, and its structure appears normal for its type."
)

_GENERIC_RISK_FACTOR = "potentially harmful pattern detected"

_CLOSING_SENTENCES: dict[ThreatLevel, str] = {
    ThreatLevel.HIGH: (
        "This file poses a significant security risk and should not be opened, "
        "executed, or distributed."
    ),
    ThreatLevel.MEDIUM: (
        "This file contains potentially risky patterns; review it carefully "
        "before trusting it."
    ),
    ThreatLevel.LOW: (
        "The detected patterns are informational and are unlikely to be harmful "
        "on their own."
    ),
}

_RECOMMENDATIONS: dict[ThreatLevel, tuple[str, ...]] = {
    ThreatLevel.HIGH: (
        "Do not open or execute this file.",
        "Delete the file or move it to quarantine.",
        "Scan any system that has already opened it.",
    ),
    ThreatLevel.MEDIUM: (
        "Review the flagged code before running it.",
        "Only run the file in an isolated environment.",
    ),
    ThreatLevel.LOW: ("No action required; review the flagged patterns if the source is untrusted.",),
    ThreatLevel.NONE: (),
}


def compute_threat_level(findings: Iterable[Detection]) -> ThreatLevel:
    """Return the highest severity across *findings* (``none`` when empty)."""
    level = ThreatLevel.NONE
    for detection in findings:
        severity = detection.severity
        if severity.rank > level.rank:
            level = severity
            if level is ThreatLevel.HIGH:
                break
    return level


def build_summary(
    findings: Sequence[Detection],
    threat_level: ThreatLevel,
    degraded_stages: Sequence[str] = (),
) -> ScanSummary:
    """Generate the human-readable summary for a finished scan.

    Args:
        findings: Final findings in detector order.
        threat_level: Level computed by :func:`compute_threat_level`.
        degraded_stages: Detector stages that failed and contributed
            nothing.  When non-empty a sentence noting the reduced evidence
            is appended to the text.

    Returns:
        A :class:`~filesentry.core.models.ScanSummary`.
    """
    if not findings:
        text = NO_ISSUES_SUMMARY
        risk_factors: tuple[str, ...] = ()
    else:
        types: list[str] = []
        for detection in findings:
            if detection.type.value not in types:
                types.append(detection.type.value)
        noun = "issue" if len(findings) == 1 else "issues"
        text = (
            f"Analysis found {len(findings)} potential {noun} in this file "
            f"({', '.join(types)}). {_CLOSING_SENTENCES[threat_level]}"
        )
        risk_factors = tuple(
            f"{d.name}: {d.details or _GENERIC_RISK_FACTOR}" for d in findings
        )

    if degraded_stages:
        text = (
            f"{text} Note: the {', '.join(degraded_stages)} "
            f"{'stage' if len(degraded_stages) == 1 else 'stages'} could not be completed, "
            "so this verdict is based on partial evidence."
        )

    return ScanSummary(
        text=text,
        risk_factors=risk_factors,
        recommendations=_RECOMMENDATIONS[threat_level],
    )
