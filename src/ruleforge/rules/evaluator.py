"""Rule Evaluator: matches enabled rules against a target's facts."""

from __future__ import annotations

from ruleforge.core.models import FactSnapshot, Match, Rule, RuleCategory
from ruleforge.rules.compiler import condition_holds
from ruleforge.rules.store import RuleStore
from ruleforge.runtime.cache import CacheKey, ResultCache


class RuleEvaluator:
    """Evaluates rules with pure lookups; no external calls.

    When a :class:`ResultCache` is supplied, each (rule, target, facts)
    triple is looked up before evaluation and stored after it. Cached and
    fresh results are identical because the cache key covers the facts.
    """

    def __init__(self, store: RuleStore, cache: ResultCache | None = None) -> None:
        self.store = store
        self.cache = cache

    def evaluate(self, category: RuleCategory, facts: FactSnapshot) -> list[Match]:
        """Matching rules of *category*, in store order."""
        digest = facts.digest() if self.cache is not None else ""
        matches: list[Match] = []
        for rule in self.store.get(category):
            match = self._cached(rule, facts, digest)
            if match.matched:
                matches.append(match)
        return matches

    def evaluate_rule(self, rule: Rule, facts: FactSnapshot) -> Match:
        bindings: dict[str, object] = {}
        for cond in rule.conditions:
            if not condition_holds(cond, facts):
                return Match(
                    rule_id=rule.id,
                    target_id=facts.target_id,
                    matched=False,
                    category=rule.category,
                    severity=rule.severity,
                )
            bindings[cond.fact] = facts.get(cond.fact)
        return Match(
            rule_id=rule.id,
            target_id=facts.target_id,
            matched=True,
            bindings=bindings,
            category=rule.category,
            severity=rule.severity,
        )

    def _cached(self, rule: Rule, facts: FactSnapshot, digest: str) -> Match:
        if self.cache is None:
            return self.evaluate_rule(rule, facts)
        key = CacheKey(rule.id, facts.target_id, digest)
        entry = self.cache.get(key)
        if entry is not None:
            return entry.value
        match = self.evaluate_rule(rule, facts)
        self.cache.put(key, match)
        return match
