"""Conflict-free store of compiled rules.

The store is shared read-mostly across all diagnostic passes. Structural
changes (insert, enable, disable, merge) go through one re-entrant lock;
outcome statistics go through lock stripes keyed by rule id, so updates to
different rules proceed concurrently while updates to the same rule are
serialized.
"""

from __future__ import annotations

import logging
import threading
import zlib

from ruleforge.core.errors import DuplicateRule, InvalidRule, RuleConflict, RuleNotFound
from ruleforge.core.models import Pattern, Rule, RuleCategory, RuleRevision, utcnow
from ruleforge.rules.compiler import compile_conditions
from ruleforge.rules.conflicts import ConflictPair, conflict_pairs, find_conflicts
from ruleforge.rules.repository import RuleRepository

logger = logging.getLogger(__name__)

DEFAULT_STRIPES = 32


def rule_order(rule: Rule) -> tuple[float, str, str]:
    """Sort key: highest confidence first, then oldest, then id."""
    return (-rule.confidence, rule.created_at.isoformat(), rule.id)


class RuleStore:
    """In-memory rule store with optional SQLite write-through."""

    def __init__(
        self,
        repository: RuleRepository | None = None,
        stripes: int = DEFAULT_STRIPES,
    ) -> None:
        self._rules: dict[str, Rule] = {}
        self._lock = threading.RLock()
        self._stat_locks = [threading.Lock() for _ in range(max(1, stripes))]
        self._repository = repository

        if repository is not None:
            for rule in repository.load_all():
                self._rules[rule.id] = rule

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, category: RuleCategory) -> list[Rule]:
        """Enabled rules of *category*, in deterministic evaluation order."""
        with self._lock:
            live = [r for r in self._rules.values() if r.enabled and r.category == category]
        return sorted((self._snapshot(r) for r in live), key=rule_order)

    def get_rule(self, rule_id: str) -> Rule:
        return self._snapshot(self._live(rule_id))

    def list_rules(
        self,
        category: RuleCategory | None = None,
        include_disabled: bool = False,
    ) -> list[Rule]:
        with self._lock:
            live = [
                r for r in self._rules.values()
                if (include_disabled or r.enabled) and (category is None or r.category == category)
            ]
        return sorted(
            (self._snapshot(r) for r in live),
            key=lambda r: (list(RuleCategory).index(r.category),) + rule_order(r),
        )

    def equivalent_of(self, rule: Rule) -> Rule | None:
        """An enabled rule with the same category, body and conclusion."""
        conditions = compile_conditions(rule.conditions)
        with self._lock:
            for existing in self._rules.values():
                if (
                    existing.enabled
                    and existing.category == rule.category
                    and existing.conditions == conditions
                    and existing.conclusion == rule.conclusion
                ):
                    return self._snapshot(existing)
        return None

    def conflicts_for(self, rule: Rule) -> list[str]:
        with self._lock:
            return find_conflicts(rule, list(self._rules.values()))

    def conflict_pairs(self) -> list[ConflictPair]:
        with self._lock:
            return conflict_pairs(list(self._rules.values()))

    def next_free_id(self, base: str) -> str:
        """*base*, or *base* with the lowest numeric suffix not yet taken."""
        with self._lock:
            if base not in self._rules:
                return base
            n = 2
            while f"{base}-{n}" in self._rules:
                n += 1
            return f"{base}-{n}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        with self._lock:
            return rule_id in self._rules

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, rule: Rule, author: str = "ruleforge") -> str:
        """Compile and insert *rule*. Returns its id.

        Raises :class:`RuleConflict` when an enabled rule of the same
        category contradicts it; nothing is overwritten.
        """
        if not rule.id:
            raise InvalidRule("Rule id must not be empty")
        if rule.category == RuleCategory.CURATIVE and rule.action is None:
            raise InvalidRule(f"Curative rule {rule.id} needs a repair action")
        if not 0 <= rule.success_count <= rule.applied_count:
            raise InvalidRule(f"Rule {rule.id}: success_count must be within [0, applied_count]")

        candidate = rule.snapshot()
        candidate.conditions = compile_conditions(candidate.conditions)

        with self._lock:
            if candidate.id in self._rules:
                raise DuplicateRule(candidate.id)
            if candidate.enabled:
                conflicts = find_conflicts(candidate, list(self._rules.values()))
                if conflicts:
                    raise RuleConflict(candidate.id, conflicts[0])
            if not candidate.revisions:
                candidate.revisions.append(
                    RuleRevision(1, f"created ({candidate.provenance.label})", author=author)
                )
            self._persist(candidate)
            self._rules[candidate.id] = candidate

        logger.info("Inserted %s rule %s: %s", candidate.category.value, candidate.id, candidate.describe())
        return candidate.id

    def disable(self, rule_id: str, author: str = "ruleforge", reason: str = "") -> Rule:
        """Soft-delete a rule. Disabling a disabled rule is a no-op."""
        with self._lock:
            rule = self._live(rule_id)
            if rule.enabled:
                rule.enabled = False
                self._add_revision(rule, f"disabled{': ' + reason if reason else ''}", author)
                self._persist(rule)
                logger.info("Disabled rule %s", rule_id)
            return self._snapshot(rule)

    def enable(self, rule_id: str, author: str = "ruleforge") -> Rule:
        """Re-enable a rule, provided it conflicts with no enabled rule."""
        with self._lock:
            rule = self._live(rule_id)
            if not rule.enabled:
                conflicts = find_conflicts(rule, list(self._rules.values()))
                if conflicts:
                    raise RuleConflict(rule_id, conflicts[0])
                rule.enabled = True
                self._add_revision(rule, "enabled", author)
                self._persist(rule)
                logger.info("Enabled rule %s", rule_id)
            return self._snapshot(rule)

    def merge(self, rule_id: str, pattern: Pattern) -> Rule:
        """Fold a re-emitted pattern into an existing equivalent rule."""
        with self._lock:
            rule = self._live(rule_id)
            with self._stat_lock(rule_id):
                if pattern.id not in rule.provenance.pattern_ids:
                    rule.provenance.pattern_ids.append(pattern.id)
                previous = rule.provenance.confidence
                rule.provenance.confidence = max(previous, pattern.confidence)
                self._add_revision(
                    rule,
                    f"merged pattern {pattern.id} (confidence {previous:.2f} -> "
                    f"{rule.provenance.confidence:.2f})",
                    "distiller",
                )
            self._persist(rule)
            return self._snapshot(rule)

    def record_outcome(self, rule_id: str, succeeded: bool) -> Rule:
        """Count one applied repair and, if it succeeded, one success.

        The only mutator of rule statistics. Applied is incremented before
        success so that no reader can observe success > applied.
        """
        rule = self._live(rule_id)
        with self._stat_lock(rule_id):
            rule.applied_count += 1
            if succeeded:
                rule.success_count += 1
            rule.last_applied_at = utcnow()
            if self._repository is not None:
                self._repository.update_stats(
                    rule_id, rule.applied_count, rule.success_count, rule.last_applied_at
                )
            return rule.snapshot()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _live(self, rule_id: str) -> Rule:
        with self._lock:
            rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFound(rule_id)
        return rule

    def _stat_lock(self, rule_id: str) -> threading.Lock:
        return self._stat_locks[zlib.crc32(rule_id.encode("utf-8")) % len(self._stat_locks)]

    def _snapshot(self, rule: Rule) -> Rule:
        with self._stat_lock(rule.id):
            return rule.snapshot()

    def _add_revision(self, rule: Rule, message: str, author: str) -> None:
        rule.revisions.append(RuleRevision(len(rule.revisions) + 1, message, author=author))

    def _persist(self, rule: Rule) -> None:
        # counters are read by save and must not move underneath it
        if self._repository is not None:
            with self._stat_lock(rule.id):
                self._repository.save(rule)
