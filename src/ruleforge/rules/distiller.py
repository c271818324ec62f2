"""Rule Distiller: turns high-confidence patterns into compiled rules."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from itertools import islice

from ruleforge.core.audit import DistillationLog
from ruleforge.core.errors import DuplicateRule, RuleConflict
from ruleforge.core.models import Pattern, Provenance, ProvenanceKind, Rule
from ruleforge.rules.compiler import compile_conditions
from ruleforge.rules.mapping import MAPPING_VERSION, PatternShape, lookup
from ruleforge.rules.store import RuleStore
from ruleforge.sources.base import PatternSource

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.85

LOW_CONFIDENCE = "low-confidence"
UNMAPPED_PATTERN = "unmapped-pattern"


class DistillStatus(enum.Enum):
    ACCEPTED = "accepted"
    MERGED = "merged"
    REJECTED = "rejected"


@dataclass
class DistillResult:
    pattern: Pattern
    status: DistillStatus
    rule: Rule | None = None
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.status != DistillStatus.REJECTED


@dataclass
class DistillationSummary:
    results: list[DistillResult] = field(default_factory=list)
    conflict_violations: list[tuple[str, str]] = field(default_factory=list)

    @property
    def accepted(self) -> list[DistillResult]:
        return [r for r in self.results if r.status == DistillStatus.ACCEPTED]

    @property
    def merged(self) -> list[DistillResult]:
        return [r for r in self.results if r.status == DistillStatus.MERGED]

    @property
    def rejected(self) -> list[DistillResult]:
        return [r for r in self.results if r.status == DistillStatus.REJECTED]


class RuleDistiller:
    """Converts patterns into conflict-checked rules.

    A pattern is accepted only if its confidence is strictly above
    ``min_confidence`` and its feature set is a known shape in the mapping
    table. Candidates contradicting an enabled rule are rejected with
    ``conflicts-with:<rule-id>`` and left for external adjudication.
    """

    def __init__(
        self,
        store: RuleStore,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        log: DistillationLog | None = None,
    ) -> None:
        self.store = store
        self.min_confidence = min_confidence
        self.log = log

    def distill(self, pattern: Pattern) -> DistillResult:
        if pattern.confidence <= self.min_confidence:
            return self._reject(pattern, LOW_CONFIDENCE)

        shape = lookup(pattern)
        if shape is None:
            return self._reject(pattern, UNMAPPED_PATTERN)

        # lookup and insert are separate steps; a concurrent distill of the
        # same shape can take the id in between, so look again once
        for attempt in (1, 2):
            candidate = self._candidate(pattern, shape)

            existing = self.store.equivalent_of(candidate)
            if existing is not None:
                merged = self.store.merge(existing.id, pattern)
                self._record(pattern, DistillStatus.MERGED, merged.id)
                logger.info("Pattern %s merged into rule %s", pattern.id, merged.id)
                return DistillResult(pattern, DistillStatus.MERGED, rule=merged)

            try:
                rule_id = self.store.insert(candidate, author="distiller")
            except DuplicateRule:
                if attempt == 2:
                    raise
                logger.debug("Rule id %s was taken concurrently; retrying %s", candidate.id, pattern.id)
                continue
            except RuleConflict as exc:
                return self._reject(pattern, exc.code)
            break

        rule = self.store.get_rule(rule_id)
        self._record(pattern, DistillStatus.ACCEPTED, rule_id)
        return DistillResult(pattern, DistillStatus.ACCEPTED, rule=rule)

    def drain(self, source: PatternSource, limit: int | None = None) -> DistillationSummary:
        """Run one distillation cycle over what *source* has available."""
        summary = DistillationSummary()
        for pattern in islice(source.next_patterns(), limit):
            summary.results.append(self.distill(pattern))

        pairs = self.store.conflict_pairs()
        for pair in pairs:
            logger.error(
                "Enabled rules %s and %s conflict on %s", pair.first, pair.second, pair.fact
            )
        summary.conflict_violations = [(p.first, p.second) for p in pairs]

        logger.info(
            "Distillation cycle: %d accepted, %d merged, %d rejected",
            len(summary.accepted),
            len(summary.merged),
            len(summary.rejected),
        )
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _candidate(self, pattern: Pattern, shape: PatternShape) -> Rule:
        return Rule(
            id=self.store.next_free_id(shape.name),
            name=shape.name,
            category=shape.category,
            conditions=compile_conditions(shape.conditions),
            conclusion=shape.conclusion,
            severity=shape.severity,
            action=shape.action,
            provenance=Provenance(
                kind=ProvenanceKind.DISTILLED,
                pattern_ids=[pattern.id],
                confidence=pattern.confidence,
                author="distiller",
                origin=pattern.origin,
                mapping_version=MAPPING_VERSION,
            ),
            description=shape.description,
            tags=[pattern.outcome],
        )

    def _reject(self, pattern: Pattern, reason: str) -> DistillResult:
        logger.info("Pattern %s rejected: %s", pattern.id, reason)
        self._record(pattern, DistillStatus.REJECTED, reason=reason)
        return DistillResult(pattern, DistillStatus.REJECTED, reason=reason)

    def _record(self, pattern: Pattern, status: DistillStatus, rule_id: str = "", reason: str = "") -> None:
        if self.log is not None:
            self.log.record(
                pattern=pattern.id,
                outcome=pattern.outcome,
                result=status.value,
                rule=rule_id,
                reason=reason,
            )
