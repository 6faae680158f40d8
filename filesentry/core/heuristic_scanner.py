"""HeuristicCodeScanner — pattern-based static analysis of script and markup files.

:class:`HeuristicCodeScanner` runs the compiled rule tables from
:mod:`filesentry.core.patterns.code_rules` against the decoded text of a
code-like file and returns :class:`~filesentry.core.models.Detection`
objects.  The heuristics are deliberately simple and auditable: they are a
triage signal, false positives are expected.

**Algorithm**

1. Obfuscation pass — indicators are tried in order; the first match emits
   exactly one ``"Code Obfuscation"`` detection (high risk, confidence 0.9)
   and the remaining indicators are skipped.
2. Dangerous-construct pass — every rule is evaluated independently, in
   table order.  A rule with at least one match emits one detection whose
   ``count`` is the number of matches and whose confidence follows its risk.
3. The file's risk level is the ceiling over the emitted risks.

Only files whose extension is in the configured code-extension set are
scanned.  Content that cannot be read or decoded as text produces an empty
result, not an error.

Usage::

    from filesentry.core.heuristic_scanner import HeuristicCodeScanner

    scanner = HeuristicCodeScanner()
    result = scanner.scan_text("var x = eval(input);")
    print(result.risk_level, [d.name for d in result.threats])
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from filesentry.core.models import (
    Detection,
    DetectionSource,
    DetectionType,
    RiskLevel,
    ThreatLevel,
)
from filesentry.core.patterns.code_rules import RuleSet, get_builtin_rule_set

logger = logging.getLogger(__name__)

DEFAULT_CODE_EXTENSIONS: frozenset[str] = frozenset(
    {".js", ".ts", ".jsx", ".tsx", ".py", ".php", ".html", ".css"}
)

OBFUSCATION_DETECTION_NAME = "Code Obfuscation"

#: Confidence assigned to a detection from its risk level.
RISK_CONFIDENCE: dict[RiskLevel, float] = {
    RiskLevel.HIGH: 0.9,
    RiskLevel.MEDIUM: 0.7,
    RiskLevel.LOW: 0.5,
}

# Files larger than this are truncated before pattern matching.
_MAX_SCAN_CHARS = 10 * 1024 * 1024


@dataclass(frozen=True)
class HeuristicResult:
    """Output of one heuristic pass over a file.

    Attributes:
        threats: Detections in emission order (obfuscation first, then the
            rule table order).
        risk_level: Ceiling over the emitted risks; ``none`` when nothing
            matched.
        obfuscated: ``True`` when an obfuscation indicator matched.
    """

    threats: tuple[Detection, ...] = field(default_factory=tuple)
    risk_level: ThreatLevel = ThreatLevel.NONE
    obfuscated: bool = False


def stage_risk_level(detections: Iterable[Detection], obfuscated: bool = False) -> ThreatLevel:
    """Return the ceiling risk over *detections* (``none`` for an empty input)."""
    if obfuscated:
        return ThreatLevel.HIGH
    level = ThreatLevel.NONE
    for d in detections:
        if d.severity.rank > level.rank:
            level = d.severity
    return level


class HeuristicCodeScanner:
    """Stateless rule-table scanner for script, markup and code files.

    Args:
        rule_set: Compiled rule tables.  Defaults to the built-in tables.
        code_extensions: Extensions (with leading dot) routed to this
            scanner.  Defaults to :data:`DEFAULT_CODE_EXTENSIONS`.
    """

    def __init__(
        self,
        rule_set: RuleSet | None = None,
        code_extensions: Iterable[str] | None = None,
    ) -> None:
        self._rule_set = rule_set or get_builtin_rule_set()
        self._code_extensions = (
            frozenset(e.lower() for e in code_extensions)
            if code_extensions is not None
            else DEFAULT_CODE_EXTENSIONS
        )
        logger.debug(
            "HeuristicCodeScanner initialised with %d obfuscation indicator(s), %d rule(s)",
            len(self._rule_set.obfuscation),
            len(self._rule_set.rules),
        )

    @property
    def code_extensions(self) -> frozenset[str]:
        return self._code_extensions

    def is_code_file(self, file_name: str) -> bool:
        """Return ``True`` if *file_name* has one of the configured extensions."""
        ext = os.path.splitext(file_name)[1].lower()
        return bool(ext) and ext in self._code_extensions

    # ------------------------------------------------------------------
    # Core detection
    # ------------------------------------------------------------------

    def scan_text(self, content: str) -> HeuristicResult:
        """Run both passes over *content* and return the result."""
        if not content:
            return HeuristicResult()

        threats: list[Detection] = []
        obfuscated = False

        for indicator in self._rule_set.obfuscation:
            if indicator.regex.search(content):
                obfuscated = True
                threats.append(
                    Detection(
                        name=OBFUSCATION_DETECTION_NAME,
                        type=DetectionType.OBFUSCATION,
                        confidence=RISK_CONFIDENCE[RiskLevel.HIGH],
                        risk=RiskLevel.HIGH,
                        details=f"Obfuscation indicator matched: {indicator.name}",
                        source=DetectionSource.HEURISTIC,
                    )
                )
                break

        for rule in self._rule_set.rules:
            count = sum(1 for _ in rule.regex.finditer(content))
            if count == 0:
                continue
            threats.append(
                Detection(
                    name=rule.name,
                    type=rule.type,
                    confidence=RISK_CONFIDENCE[rule.risk],
                    risk=rule.risk,
                    details=f"{count} match{'es' if count != 1 else ''} found",
                    count=count,
                    source=DetectionSource.HEURISTIC,
                )
            )

        return HeuristicResult(
            threats=tuple(threats),
            risk_level=stage_risk_level(threats, obfuscated),
            obfuscated=obfuscated,
        )

    def scan_file(self, file_path: str | Path) -> HeuristicResult:
        """Decode the file at *file_path* and scan it.

        Unreadable files and content that does not look like text produce an
        empty result.
        """
        try:
            with open(file_path, "rb") as fh:
                raw = fh.read(_MAX_SCAN_CHARS)
        except OSError as exc:
            logger.warning("Heuristic scan skipped: cannot read %s: %s", file_path, exc)
            return HeuristicResult()

        if b"\x00" in raw[:8192]:
            logger.debug("Heuristic scan skipped: %s looks binary", file_path)
            return HeuristicResult()

        content = raw.decode("utf-8", errors="replace")
        return self.scan_text(content)
