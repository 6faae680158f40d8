"""Built-in heuristic rule tables for the FileSentry code scanner.

Two tables drive :class:`~filesentry.core.heuristic_scanner.HeuristicCodeScanner`:

* **Obfuscation indicators** — evaluated in order; the first one that
  matches marks the file as obfuscated and no further indicators are tried.
* **Dangerous constructs** — every rule is evaluated independently; each
  rule that matches at least once produces one detection.

The tables are data.  Additional entries can be supplied at startup via a
JSON file (see :func:`load_rule_set`); they are appended after the
built-ins.  All patterns are compiled on load, never at scan time.

**JSON config format**:

.. code-block:: json

    {
        "obfuscation": [
            {"name": "packer", "pattern": "eval\\\\(function\\\\(p,a,c,k,e"}
        ],
        "rules": [
            {
                "name": "Insecure Deserialization",
                "pattern": "pickle\\\\.loads\\\\(",
                "risk": "high",
                "type": "code-execution"
            }
        ]
    }

Valid risk values: ``"low"``, ``"medium"``, ``"high"``.  Valid types are the
:class:`~filesentry.core.models.DetectionType` values.  An optional boolean
``"ignore_case"`` enables case-insensitive matching for a rule.

Usage::

    from filesentry.core.patterns.code_rules import load_rule_set

    rule_set = load_rule_set()                        # built-ins only
    rule_set = load_rule_set("/etc/filesentry/rules.json")
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from filesentry.core.models import DetectionType, RiskLevel

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rule entry types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ObfuscationIndicator:
    """A pre-compiled obfuscation indicator.

    Attributes:
        name: Short identifier reported in the detection details.
        regex: Pre-compiled pattern.
    """

    name: str
    regex: re.Pattern  # type: ignore[type-arg]


@dataclass(frozen=True)
class DangerousRule:
    """A pre-compiled dangerous-construct rule.

    Attributes:
        name: Detection name emitted when the rule matches
            (e.g. ``"Unsafe Eval"``).
        regex: Pre-compiled pattern.  ``regex.findall`` counts matches.
        risk: Risk level of a positive match.
        type: Detection category.
    """

    name: str
    regex: re.Pattern  # type: ignore[type-arg]
    risk: RiskLevel
    type: DetectionType


@dataclass(frozen=True)
class RuleSet:
    """The complete, ordered rule tables used by one scanner instance."""

    obfuscation: tuple[ObfuscationIndicator, ...]
    rules: tuple[DangerousRule, ...]


# ---------------------------------------------------------------------------
# Built-in obfuscation indicators (order matters: first match wins)
# ---------------------------------------------------------------------------

_OBFUSCATION_DEFINITIONS: list[tuple[str, str]] = [
    # eval(atob("...")): base64 payload executed directly
    ("eval_atob", r"eval\s*\(\s*atob\s*\("),
    # Runs of hex escapes ("\x68\x65\x6c\x6c") or packer-style _0x1a2b names
    ("hex_escapes", r"(?:\\x[0-9a-fA-F]{2}){4,}|\b_0x[0-9a-fA-F]{4,}\b"),
    # Identifier runs far longer than anything written by hand
    ("long_identifier", r"\b[A-Za-z_$][\w$]{80,}"),
    # Runs of unicode escapes ("eval")
    ("unicode_escapes", r"(?:\\u[0-9a-fA-F]{4}){4,}"),
    # String.fromCharCode(104, 101, ...) / decodeURIComponent(escape(...)) chains
    (
        "char_code_chain",
        r"fromCharCode\s*\(\s*\d+\s*(?:,\s*\d+\s*){3,}\)"
        r"|decodeURIComponent\s*\(\s*(?:escape|unescape|atob)\s*\(",
    ),
]

# ---------------------------------------------------------------------------
# Built-in dangerous-construct rules (name, pattern, risk, type, ignore_case)
# ---------------------------------------------------------------------------

_RULE_DEFINITIONS: list[tuple[str, str, str, str, bool]] = [
    ("Unsafe Eval", r"\beval\s*\(", "high", "code-execution", False),
    ("Dynamic Function", r"\bnew\s+Function\s*\(", "high", "code-execution", False),
    (
        "DOM Manipulation",
        r"\.(?:inner|outer)HTML\s*=(?!=)|\bdocument\.write(?:ln)?\s*\(|\binsertAdjacentHTML\s*\(",
        "medium",
        "xss",
        False,
    ),
    (
        "Command Execution",
        r"\b(?:os\.system|shell_exec|passthru|system|execSync|popen)\s*\(|\bchild_process\.exec\s*\(",
        "high",
        "code-execution",
        False,
    ),
    (
        "Process Spawning",
        r"\b(?:spawn|spawnSync|execFile|fork)\s*\(|\bsubprocess\.(?:Popen|run|call|check_output)\s*\(|\bproc_open\s*\(",
        "high",
        "code-execution",
        False,
    ),
    ("External URL", r"https?://[^\s'\"<>)]+", "low", "network", True),
    (
        "Sensitive Data",
        r"\b(?:password|passwd|pwd|secret|api[_-]?key|access[_-]?token|private[_-]?key)\b\s*['\"]?\s*[:=]",
        "medium",
        "data-leakage",
        True,
    ),
    ("Path Traversal", r"(?:\.\./|\.\.\\)+", "medium", "file-access", False),
    (
        "Timer String Execution",
        r"\b(?:setTimeout|setInterval)\s*\(\s*['\"`]",
        "medium",
        "code-execution",
        False,
    ),
    (
        "Prototype Pollution",
        r"__proto__|\bconstructor\s*(?:\.\s*|\[\s*['\"])prototype",
        "high",
        "prototype-pollution",
        False,
    ),
    (
        "Dynamic Require",
        r"\b(?:require|import)\s*\(\s*(?!['\"`][^'\"`$]*['\"`]\s*\))[^)\s]",
        "medium",
        "code-execution",
        False,
    ),
    (
        "Weak Cipher",
        r"\bcreateCipher\s*\(|\bcreateHash\s*\(\s*['\"](?:md5|sha1)['\"]"
        r"|\bhashlib\.(?:md5|sha1)\s*\(|\bmcrypt_\w+\s*\(|\b(?:DES|RC4)\b",
        "medium",
        "crypto",
        False,
    ),
    (
        "Weak Random",
        r"\bMath\.random\s*\(|\brandom\.(?:random|randint|choice)\s*\(|\b(?:mt_)?rand\s*\(",
        "low",
        "crypto",
        False,
    ),
]

_BUILTIN_OBFUSCATION: tuple[ObfuscationIndicator, ...] = tuple(
    ObfuscationIndicator(name=name, regex=re.compile(raw))
    for name, raw in _OBFUSCATION_DEFINITIONS
)

_BUILTIN_RULES: tuple[DangerousRule, ...] = tuple(
    DangerousRule(
        name=name,
        regex=re.compile(raw, re.IGNORECASE if ignore_case else 0),
        risk=RiskLevel(risk),
        type=DetectionType(det_type),
    )
    for name, raw, risk, det_type, ignore_case in _RULE_DEFINITIONS
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_builtin_rule_set() -> RuleSet:
    """Return the built-in rule tables without reading any config."""
    return RuleSet(obfuscation=_BUILTIN_OBFUSCATION, rules=_BUILTIN_RULES)


def load_rule_set(custom_config_path: Optional[str | Path] = None) -> RuleSet:
    """Return the built-in rule tables extended with entries from a JSON file.

    Malformed entries (missing keys, invalid risk/type, un-compilable regex)
    are skipped with a warning so that the scanner starts with the valid
    rules even when the config contains errors.  An unreadable or invalid
    file is logged and the built-ins are returned unchanged.

    Args:
        custom_config_path: Optional path to the JSON rules file.

    Returns:
        A :class:`RuleSet` with built-in entries first.
    """
    builtin = get_builtin_rule_set()
    if custom_config_path is None:
        return builtin

    path = Path(custom_config_path)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        logger.error(
            "Cannot read heuristic rules config %s: %s — using built-in rules only",
            path,
            exc,
        )
        return builtin
    except json.JSONDecodeError as exc:
        logger.error(
            "Invalid JSON in heuristic rules config %s: %s — using built-in rules only",
            path,
            exc,
        )
        return builtin

    if not isinstance(document, dict):
        logger.error(
            "Heuristic rules config %s must contain a JSON object at the root "
            "(got %s) — using built-in rules only",
            path,
            type(document).__name__,
        )
        return builtin

    obfuscation = list(builtin.obfuscation)
    obfuscation.extend(_parse_obfuscation(document.get("obfuscation") or [], path))
    rules = list(builtin.rules)
    rules.extend(_parse_rules(document.get("rules") or [], path))

    logger.info(
        "Loaded heuristic rules from %s (obfuscation indicators: %d, rules: %d)",
        path,
        len(obfuscation),
        len(rules),
    )
    return RuleSet(obfuscation=tuple(obfuscation), rules=tuple(rules))


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _compile(raw: Any, name: str, index: int, flags: int = 0) -> re.Pattern | None:  # type: ignore[type-arg]
    if not raw or not isinstance(raw, str):
        logger.warning("Heuristic entry %r at index %d missing valid 'pattern' — skipping", name, index)
        return None
    try:
        return re.compile(raw, flags)
    except re.error as exc:
        logger.error(
            "Heuristic entry %r at index %d has invalid regex %r: %s — skipping",
            name,
            index,
            raw,
            exc,
        )
        return None


def _parse_obfuscation(entries: Any, path: Path) -> list[ObfuscationIndicator]:
    if not isinstance(entries, list):
        logger.warning("'obfuscation' in %s is not a JSON array — ignoring", path)
        return []
    parsed: list[ObfuscationIndicator] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            logger.warning("Obfuscation entry at index %d has no valid 'name' — skipping", i)
            continue
        regex = _compile(entry.get("pattern"), entry["name"], i)
        if regex is not None:
            parsed.append(ObfuscationIndicator(name=entry["name"], regex=regex))
    return parsed


def _parse_rules(entries: Any, path: Path) -> list[DangerousRule]:
    if not isinstance(entries, list):
        logger.warning("'rules' in %s is not a JSON array — ignoring", path)
        return []
    parsed: list[DangerousRule] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            logger.warning("Heuristic rule at index %d has no valid 'name' — skipping", i)
            continue
        name = entry["name"]
        try:
            risk = RiskLevel(entry.get("risk"))
            det_type = DetectionType(entry.get("type", DetectionType.SUSPICIOUS.value))
        except ValueError as exc:
            logger.warning("Heuristic rule %r at index %d: %s — skipping", name, i, exc)
            continue
        flags = re.IGNORECASE if entry.get("ignore_case") else 0
        regex = _compile(entry.get("pattern"), name, i, flags)
        if regex is None:
            continue
        parsed.append(DangerousRule(name=name, regex=regex, risk=risk, type=det_type))
    return parsed
