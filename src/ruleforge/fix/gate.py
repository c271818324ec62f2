"""Confidence Gate: picks the automation tier for a curative match."""

from __future__ import annotations

from dataclasses import dataclass

from ruleforge.core.models import FixAction, FixDecision, Match, Rule, RuleCategory

DEFAULT_AUTO_APPLY_THRESHOLD = 0.95
DEFAULT_PROPOSE_THRESHOLD = 0.80


@dataclass
class ConfidenceGate:
    """Maps a rule's confidence onto auto-apply / propose / alert-only.

    Confidence is the rule's historical success rate, or its
    distillation-time confidence while it has never been applied. The
    thresholds are checked afresh on every decision.
    """

    auto_apply_threshold: float = DEFAULT_AUTO_APPLY_THRESHOLD
    propose_threshold: float = DEFAULT_PROPOSE_THRESHOLD

    def decide(self, match: Match, rule: Rule) -> FixDecision:
        if match.rule_id != rule.id:
            raise ValueError(f"Match for {match.rule_id} decided against rule {rule.id}")
        if rule.category != RuleCategory.CURATIVE:
            raise ValueError(f"Rule {rule.id} is {rule.category.value}; only curative rules repair")
        if not match.matched:
            raise ValueError(f"Rule {rule.id} did not match {match.target_id}")

        confidence = rule.confidence
        if rule.applied_count:
            basis = f"success rate {confidence:.2f} ({rule.success_count}/{rule.applied_count})"
        else:
            basis = f"cold-start confidence {confidence:.2f} ({rule.provenance.label})"

        if confidence >= self.auto_apply_threshold:
            action = FixAction.AUTO_APPLY
            reason = f"{basis} >= auto-apply threshold {self.auto_apply_threshold:.2f}"
        elif confidence >= self.propose_threshold:
            action = FixAction.PROPOSE
            reason = f"{basis} >= propose threshold {self.propose_threshold:.2f}"
        else:
            action = FixAction.ALERT_ONLY
            reason = f"{basis} < propose threshold {self.propose_threshold:.2f}"

        return FixDecision(match=match, action=action, confidence=confidence, reason=reason)
