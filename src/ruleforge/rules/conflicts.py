"""Semantic conflict detection between rules.

Two rules conflict when they share a category, some target could satisfy
both condition sets, and their conclusions are mutually exclusive (one
requires fact X, the other forbids it).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ruleforge.core.models import Rule
from ruleforge.rules.compiler import conditions_satisfiable


@dataclass(frozen=True)
class ConflictPair:
    first: str
    second: str
    fact: str


def conditions_overlap(a: Rule, b: Rule) -> bool:
    """True when at least one fact snapshot satisfies both rules."""
    return conditions_satisfiable(a.conditions + b.conditions)


def rules_conflict(a: Rule, b: Rule) -> bool:
    if a.category != b.category:
        return False
    if not a.conclusion.excludes(b.conclusion):
        return False
    return conditions_overlap(a, b)


def find_conflicts(candidate: Rule, rules: Iterable[Rule]) -> list[str]:
    """Return ids of enabled rules that *candidate* conflicts with."""
    return [
        rule.id
        for rule in rules
        if rule.enabled and rule.id != candidate.id and rules_conflict(candidate, rule)
    ]


def conflict_pairs(rules: Iterable[Rule]) -> list[ConflictPair]:
    """All conflicting pairs among enabled rules.

    An empty list means the rule set is conflict-free.
    """
    enabled = sorted((r for r in rules if r.enabled), key=lambda r: r.id)
    pairs: list[ConflictPair] = []
    for i, first in enumerate(enabled):
        for second in enabled[i + 1:]:
            if rules_conflict(first, second):
                pairs.append(ConflictPair(first.id, second.id, first.conclusion.fact))
    return pairs
