"""Unit tests for :mod:`filesentry.core.patterns.code_rules`.

Coverage:
* Built-in tables: names, order, risk/type tags.
* Custom JSON loading: appended entries, malformed entries skipped,
  unreadable or invalid files fall back to built-ins.
"""

from __future__ import annotations

import json

from filesentry.core.heuristic_scanner import HeuristicCodeScanner
from filesentry.core.models import DetectionType, RiskLevel
from filesentry.core.patterns.code_rules import get_builtin_rule_set, load_rule_set

_EXPECTED_RULES = [
    "Unsafe Eval",
    "Dynamic Function",
    "DOM Manipulation",
    "Command Execution",
    "Process Spawning",
    "External URL",
    "Sensitive Data",
    "Path Traversal",
    "Timer String Execution",
    "Prototype Pollution",
    "Dynamic Require",
    "Weak Cipher",
    "Weak Random",
]


def _write(tmp_path, document) -> str:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    return str(path)


class TestBuiltins:
    def test_rule_names_in_order(self) -> None:
        assert [r.name for r in get_builtin_rule_set().rules] == _EXPECTED_RULES

    def test_eval_atob_is_first_indicator(self) -> None:
        assert get_builtin_rule_set().obfuscation[0].name == "eval_atob"

    def test_unsafe_eval_tags(self) -> None:
        rule = get_builtin_rule_set().rules[0]
        assert rule.risk is RiskLevel.HIGH
        assert rule.type is DetectionType.CODE_EXECUTION

    def test_load_without_path_returns_builtins(self) -> None:
        assert load_rule_set() == get_builtin_rule_set()


class TestCustomRules:
    def test_custom_entries_appended(self, tmp_path) -> None:
        path = _write(
            tmp_path,
            {
                "obfuscation": [{"name": "packer", "pattern": r"eval\(function\(p,a,c,k,e"}],
                "rules": [
                    {
                        "name": "Insecure Deserialization",
                        "pattern": r"pickle\.loads\(",
                        "risk": "high",
                        "type": "code-execution",
                    }
                ],
            },
        )
        rule_set = load_rule_set(path)
        assert rule_set.rules[-1].name == "Insecure Deserialization"
        assert rule_set.obfuscation[-1].name == "packer"
        assert len(rule_set.rules) == len(_EXPECTED_RULES) + 1

    def test_custom_rule_is_used_by_scanner(self, tmp_path) -> None:
        path = _write(
            tmp_path,
            {"rules": [{"name": "Pickle", "pattern": r"pickle\.loads\(", "risk": "low"}]},
        )
        result = HeuristicCodeScanner(rule_set=load_rule_set(path)).scan_text(
            "pickle.loads(data)"
        )
        detection = [d for d in result.threats if d.name == "Pickle"][0]
        assert detection.type is DetectionType.SUSPICIOUS
        assert detection.confidence == 0.5

    def test_ignore_case_flag(self, tmp_path) -> None:
        path = _write(
            tmp_path,
            {"rules": [{"name": "Todo", "pattern": "todo", "risk": "low", "ignore_case": True}]},
        )
        result = HeuristicCodeScanner(rule_set=load_rule_set(path)).scan_text("// TODO fix")
        assert any(d.name == "Todo" for d in result.threats)

    def test_malformed_entries_skipped(self, tmp_path) -> None:
        path = _write(
            tmp_path,
            {
                "rules": [
                    {"name": "No Pattern", "risk": "low"},
                    {"name": "Bad Risk", "pattern": "x", "risk": "extreme"},
                    {"name": "Bad Type", "pattern": "x", "risk": "low", "type": "ransomware"},
                    {"name": "Bad Regex", "pattern": "(unclosed", "risk": "low"},
                    {"pattern": "nameless", "risk": "low"},
                    "not-an-object",
                    {"name": "Good", "pattern": "good", "risk": "medium"},
                ]
            },
        )
        added = [r.name for r in load_rule_set(path).rules[len(_EXPECTED_RULES):]]
        assert added == ["Good"]

    def test_missing_file_returns_builtins(self, tmp_path) -> None:
        assert load_rule_set(tmp_path / "missing.json") == get_builtin_rule_set()

    def test_invalid_json_returns_builtins(self, tmp_path) -> None:
        path = tmp_path / "rules.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_rule_set(path) == get_builtin_rule_set()

    def test_non_object_root_returns_builtins(self, tmp_path) -> None:
        assert load_rule_set(_write(tmp_path, [1, 2])) == get_builtin_rule_set()
