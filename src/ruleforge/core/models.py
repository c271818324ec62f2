"""Shared data models used across RuleForge modules."""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Severity(enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class RuleCategory(enum.Enum):
    DECLARATIVE = "declarative"  # what must hold
    PREVENTIVE = "preventive"  # block before it happens
    CURATIVE = "curative"  # repair after detection


class ConditionOp(enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"


class Requirement(enum.Enum):
    REQUIRED = "required"
    FORBIDDEN = "forbidden"


class ProvenanceKind(enum.Enum):
    MANUAL = "manual"
    DISTILLED = "distilled"


class FixAction(enum.Enum):
    AUTO_APPLY = "auto-apply"
    PROPOSE = "propose"
    ALERT_ONLY = "alert-only"


class ActionStatus(enum.Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class OutcomeStatus(enum.Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    LOCK_BUSY = "lock-busy"
    CANCELLED = "cancelled"


class PipelineStage(enum.Enum):
    DETECT = "detect"
    ANALYZE = "analyze"
    DIAGNOSE = "diagnose"
    REPAIR = "repair"
    LEARN = "learn"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.COMPLETE, PipelineStage.FAILED, PipelineStage.CANCELLED)


# ---------------------------------------------------------------------------
# Patterns and targets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Pattern:
    """A learned correlation between facts and an outcome.

    Patterns are immutable. A changed pattern is re-emitted under a new id.
    """

    id: str
    features: frozenset[str]
    outcome: str
    confidence: float
    origin: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", frozenset(self.features))
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Pattern {self.id}: confidence {self.confidence} outside [0, 1]")


@dataclass(frozen=True)
class TargetRef:
    """Abstract identity of an administered repository."""

    forge: str
    owner: str
    name: str

    @property
    def id(self) -> str:
        return f"{self.forge}:{self.owner}/{self.name}"

    @classmethod
    def parse(cls, target_id: str) -> TargetRef:
        """Parse ``forge:owner/name``."""
        forge, sep, rest = target_id.partition(":")
        owner, slash, name = rest.partition("/")
        if not sep or not slash or not forge or not owner or not name:
            raise ValueError(f"Invalid target id {target_id!r}; expected forge:owner/name")
        return cls(forge=forge, owner=owner, name=name)

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class FactSnapshot:
    """Observed facts about one target at one point in time.

    ``tags`` hold boolean facts (``is-public``, ``has-file:LICENSE``);
    ``values`` hold comparable facts (``open-issues`` -> 12).
    """

    target_id: str
    tags: frozenset[str] = frozenset()
    values: Mapping[str, Any] = field(default_factory=dict, hash=False)
    observed_at: datetime = field(default_factory=utcnow, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "values", dict(self.values))

    def has(self, fact: str) -> bool:
        return fact in self.tags or fact in self.values

    def get(self, fact: str) -> Any:
        if fact in self.values:
            return self.values[fact]
        return True if fact in self.tags else None

    def digest(self) -> str:
        """Stable hash of the fact content (not of the observation time)."""
        payload = json.dumps(
            {
                "target": self.target_id,
                "tags": sorted(self.tags),
                "values": sorted((k, str(v)) for k, v in self.values.items()),
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

_OP_SYMBOLS = {
    ConditionOp.EQ: "==",
    ConditionOp.NE: "!=",
    ConditionOp.GT: ">",
    ConditionOp.GE: ">=",
    ConditionOp.LT: "<",
    ConditionOp.LE: "<=",
}


@dataclass(frozen=True)
class Condition:
    """A ground, enum-tagged test over one fact key."""

    fact: str
    op: ConditionOp = ConditionOp.PRESENT
    value: Any = None

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.fact, self.op.value, "" if self.value is None else repr(self.value))

    def describe(self) -> str:
        if self.op == ConditionOp.PRESENT:
            return self.fact
        if self.op == ConditionOp.ABSENT:
            return f"not {self.fact}"
        return f"{self.fact} {_OP_SYMBOLS[self.op]} {self.value!r}"


@dataclass(frozen=True)
class Conclusion:
    """What a rule asserts about a fact once its conditions hold."""

    fact: str
    requirement: Requirement = Requirement.REQUIRED

    def excludes(self, other: Conclusion) -> bool:
        """True when both conclusions cannot hold at once."""
        return self.fact == other.fact and self.requirement != other.requirement

    def describe(self) -> str:
        verb = "requires" if self.requirement == Requirement.REQUIRED else "forbids"
        return f"{verb} {self.fact}"


@dataclass(frozen=True)
class ActionSpec:
    """A repair the Action Port knows how to perform."""

    kind: str  # "inject-file", "modify-setting", "open-proposal"
    params: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def describe(self) -> str:
        target = self.params.get("path") or self.params.get("setting") or self.params.get("title", "")
        return f"{self.kind} {target}".strip()


@dataclass
class Provenance:
    kind: ProvenanceKind = ProvenanceKind.MANUAL
    pattern_ids: list[str] = field(default_factory=list)
    confidence: float = 0.9
    author: str = ""
    origin: str = ""
    mapping_version: str = ""

    @property
    def label(self) -> str:
        if self.kind == ProvenanceKind.DISTILLED and self.pattern_ids:
            return f"distilled-from-pattern:{self.pattern_ids[0]}"
        return self.kind.value


@dataclass
class RuleRevision:
    number: int
    message: str
    author: str = "ruleforge"
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Rule:
    """A compiled, category-tagged predicate."""

    id: str
    name: str
    category: RuleCategory
    conditions: tuple[Condition, ...]
    conclusion: Conclusion
    severity: Severity = Severity.WARNING
    action: ActionSpec | None = None
    provenance: Provenance = field(default_factory=Provenance)
    applied_count: int = 0
    success_count: int = 0
    enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_applied_at: datetime | None = None
    revisions: list[RuleRevision] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    description: str = ""

    @property
    def failure_count(self) -> int:
        return self.applied_count - self.success_count

    @property
    def success_rate(self) -> float | None:
        if self.applied_count == 0:
            return None
        return self.success_count / self.applied_count

    @property
    def confidence(self) -> float:
        """Historical success rate, or the base confidence on cold start."""
        rate = self.success_rate
        return self.provenance.confidence if rate is None else rate

    def describe(self) -> str:
        conds = " and ".join(c.describe() for c in self.conditions) or "always"
        return f"when {conds}: {self.conclusion.describe()}"

    def snapshot(self) -> Rule:
        """Return a copy that is safe to hand out of the store."""
        return replace(
            self,
            provenance=replace(self.provenance, pattern_ids=list(self.provenance.pattern_ids)),
            revisions=list(self.revisions),
            tags=list(self.tags),
        )


# ---------------------------------------------------------------------------
# Evaluation and repair results
# ---------------------------------------------------------------------------

@dataclass
class Match:
    """Result of evaluating one rule against one target's facts."""

    rule_id: str
    target_id: str
    matched: bool
    bindings: dict[str, Any] = field(default_factory=dict)
    category: RuleCategory = RuleCategory.DECLARATIVE
    severity: Severity = Severity.WARNING


@dataclass
class FixDecision:
    match: Match
    action: FixAction
    confidence: float
    reason: str


@dataclass
class ActionResult:
    status: ActionStatus
    reason: str = ""

    @classmethod
    def applied(cls, reason: str = "") -> ActionResult:
        return cls(ActionStatus.APPLIED, reason)

    @classmethod
    def unchanged(cls, reason: str = "") -> ActionResult:
        return cls(ActionStatus.UNCHANGED, reason)

    @classmethod
    def failed(cls, reason: str) -> ActionResult:
        return cls(ActionStatus.FAILED, reason)


@dataclass
class Outcome:
    rule_id: str
    target_id: str
    status: OutcomeStatus
    reason: str = ""
    duration_ms: float = 0.0
    finished_at: datetime = field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status in (OutcomeStatus.APPLIED, OutcomeStatus.UNCHANGED)

    @property
    def counted(self) -> bool:
        """Whether the outcome was recorded against the rule's statistics."""
        return self.status in (OutcomeStatus.APPLIED, OutcomeStatus.UNCHANGED, OutcomeStatus.FAILED)


@dataclass
class FeedbackRecord:
    """Learning signal sent back to the Pattern Source."""

    target_id: str
    rule_id: str
    status: str
    succeeded: bool
    pattern_ids: list[str] = field(default_factory=list)
    pattern_confidence: float = 0.0
    success_rate: float | None = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass
class DiagnosticReport:
    """Per-target result of one diagnostic pass."""

    target_id: str
    state: PipelineStage = PipelineStage.DETECT
    timestamp: datetime = field(default_factory=utcnow)
    findings: list[Match] = field(default_factory=list)
    decisions: list[FixDecision] = field(default_factory=list)
    outcomes: list[Outcome] = field(default_factory=list)
    health_score: int = 100
    facts_digest: str = ""
    error_code: str = ""
    error: str = ""

    @property
    def critical_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.CRITICAL)

    @property
    def warning_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.WARNING)

    @property
    def info_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.INFO)

    @property
    def auto_apply_count(self) -> int:
        return sum(1 for d in self.decisions if d.action == FixAction.AUTO_APPLY)

    @property
    def propose_count(self) -> int:
        return sum(1 for d in self.decisions if d.action == FixAction.PROPOSE)

    @property
    def alert_count(self) -> int:
        return sum(1 for d in self.decisions if d.action == FixAction.ALERT_ONLY)
