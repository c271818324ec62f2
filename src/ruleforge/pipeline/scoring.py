"""Health score computation for diagnostic reports."""

from __future__ import annotations

from dataclasses import dataclass, field

from ruleforge.core.models import FixDecision, Match, Outcome, RuleCategory, Severity


# Deduction points per severity
DEDUCTIONS = {
    Severity.CRITICAL: 15,
    Severity.WARNING: 5,
    Severity.INFO: 1,
}


@dataclass
class CategoryScore:
    """Score for a single rule category."""

    category: RuleCategory
    score: int
    max_score: int = 100
    unresolved: list[Match] = field(default_factory=list)


def unresolved_matches(
    findings: list[Match],
    decisions: list[FixDecision],
    outcomes: list[Outcome],
) -> list[Match]:
    """Findings plus curative matches that no successful repair resolved."""
    repaired = {o.rule_id for o in outcomes if o.succeeded}
    pending = [d.match for d in decisions if d.match.rule_id not in repaired]
    return list(findings) + pending


def compute_health_score(
    findings: list[Match],
    decisions: list[FixDecision],
    outcomes: list[Outcome],
    deductions: dict[Severity, int] | None = None,
) -> tuple[int, dict[str, CategoryScore]]:
    """
    Compute the overall health score and per-category scores.

    Every score starts at 100.
    Each unresolved match deducts by severity: critical=-15, warning=-5, info=-1.
    Floor at 0.
    The overall score deducts every unresolved match from a single 100, so
    adding a finding or raising its severity can never increase it.
    """
    weights = deductions or DEDUCTIONS
    unresolved = unresolved_matches(findings, decisions, outcomes)

    category_scores: dict[str, CategoryScore] = {}
    for category in RuleCategory:
        matches = [m for m in unresolved if m.category == category]
        score = 100 - sum(weights.get(m.severity, 0) for m in matches)
        category_scores[category.value] = CategoryScore(
            category=category,
            score=max(0, score),
            unresolved=matches,
        )

    total = sum(weights.get(m.severity, 0) for m in unresolved)
    return max(0, 100 - total), category_scores
