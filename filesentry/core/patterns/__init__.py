"""Heuristic rule library for FileSentry.

Provides the built-in code rule tables and custom rule loading.
"""

from filesentry.core.patterns.code_rules import (
    DangerousRule,
    ObfuscationIndicator,
    RuleSet,
    get_builtin_rule_set,
    load_rule_set,
)

__all__ = [
    "DangerousRule",
    "ObfuscationIndicator",
    "RuleSet",
    "get_builtin_rule_set",
    "load_rule_set",
]
