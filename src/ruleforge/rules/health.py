"""Rule health assessment based on post-distillation statistics."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ruleforge.core.models import Rule, RuleCategory, utcnow


class RuleHealth(enum.Enum):
    PROBATIONARY = "probationary"
    HEALTHY = "healthy"
    DEGRADING = "degrading"
    NEEDS_REVIEW = "needs-review"
    POSSIBLY_OBSOLETE = "possibly-obsolete"
    DISABLED = "disabled"


@dataclass
class Tolerance:
    min_samples: int = 10
    min_success_rate: float = 0.8
    failure_review_threshold: int = 3
    max_failure_rate: float = 0.3
    activity_window: timedelta = timedelta(weeks=1)


@dataclass
class HealthAssessment:
    health: RuleHealth
    detail: str = ""


def assess_health(
    rule: Rule,
    tolerance: Tolerance | None = None,
    now: datetime | None = None,
) -> HealthAssessment:
    """Classify a rule by how its repairs have been going.

    A curative rule that has not been applied within ``activity_window``
    (counting from creation if it never was) is possibly obsolete. Rules
    with fewer than ``min_samples`` applications are probationary; high
    failure counts need review ahead of a merely low success rate.
    """
    tol = tolerance or Tolerance()

    if not rule.enabled:
        return HealthAssessment(RuleHealth.DISABLED, "rule is disabled")

    stale = _inactivity(rule, tol, now or utcnow())
    if stale is not None:
        return HealthAssessment(RuleHealth.POSSIBLY_OBSOLETE, stale)

    if rule.applied_count < tol.min_samples:
        return HealthAssessment(
            RuleHealth.PROBATIONARY,
            f"{rule.applied_count}/{tol.min_samples} applications",
        )

    rate = rule.success_count / rule.applied_count
    failures = rule.failure_count
    if failures >= tol.failure_review_threshold and failures / rule.applied_count > tol.max_failure_rate:
        return HealthAssessment(
            RuleHealth.NEEDS_REVIEW,
            f"high failure rate: {failures} failures out of {rule.applied_count} applications",
        )

    if rate < tol.min_success_rate:
        return HealthAssessment(RuleHealth.DEGRADING, f"success rate {rate:.0%}")

    return HealthAssessment(RuleHealth.HEALTHY, f"success rate {rate:.0%}")


def _inactivity(rule: Rule, tol: Tolerance, now: datetime) -> str | None:
    # only curative rules record applications
    if rule.category != RuleCategory.CURATIVE:
        return None
    if rule.last_applied_at is not None:
        if now - _aware(rule.last_applied_at) > tol.activity_window:
            return f"no applications since {rule.last_applied_at:%Y-%m-%d}"
        return None
    if rule.applied_count == 0 and now - _aware(rule.created_at) > tol.activity_window:
        return f"never applied since {rule.created_at:%Y-%m-%d}"
    return None


def _aware(value: datetime) -> datetime:
    # hand-written rule files may carry naive timestamps
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
