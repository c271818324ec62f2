"""Predicate compilation: canonical conjunctions and satisfiability.

A rule body is a conjunction of ground conditions over fact keys. Compiling
normalizes it (deduplicated, sorted by fact/op/value) so that two rules with
the same body compare equal, and rejects bodies no target could satisfy.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable

from ruleforge.core.errors import InvalidRule
from ruleforge.core.models import Condition, ConditionOp, FactSnapshot

ORDERING_OPS = (ConditionOp.GT, ConditionOp.GE, ConditionOp.LT, ConditionOp.LE)
VALUE_OPS = (ConditionOp.EQ, ConditionOp.NE) + ORDERING_OPS


def compile_conditions(conditions: Iterable[Condition]) -> tuple[Condition, ...]:
    """Return the canonical conjunctive form of *conditions*.

    Raises :class:`InvalidRule` for malformed or unsatisfiable bodies.
    """
    unique = sorted(set(conditions), key=lambda c: c.sort_key)
    for cond in unique:
        if not cond.fact:
            raise InvalidRule("Condition without a fact key")
        if cond.op in VALUE_OPS and cond.value is None:
            raise InvalidRule(f"Condition on {cond.fact!r} with op {cond.op.value!r} needs a value")
        if cond.op in ORDERING_OPS and _as_number(cond.value) is None:
            raise InvalidRule(f"Condition on {cond.fact!r} compares against non-numeric {cond.value!r}")
    if not conditions_satisfiable(unique):
        described = ", ".join(c.describe() for c in unique)
        raise InvalidRule(f"Conditions can never hold together: {described}")
    return tuple(unique)


def conditions_satisfiable(conditions: Iterable[Condition]) -> bool:
    """True when some fact snapshot could satisfy every condition."""
    by_fact: dict[str, list[Condition]] = defaultdict(list)
    for cond in conditions:
        by_fact[cond.fact].append(cond)
    return all(_fact_satisfiable(conds) for conds in by_fact.values())


def condition_holds(cond: Condition, facts: FactSnapshot) -> bool:
    """Evaluate one condition against a snapshot (pure lookup, no I/O)."""
    op = cond.op
    if op == ConditionOp.PRESENT:
        return facts.has(cond.fact)
    if op == ConditionOp.ABSENT:
        return not facts.has(cond.fact)

    if not facts.has(cond.fact):
        # A missing fact differs from every value.
        return op == ConditionOp.NE
    observed = facts.get(cond.fact)

    if op == ConditionOp.EQ:
        return _equal(observed, cond.value)
    if op == ConditionOp.NE:
        return not _equal(observed, cond.value)

    left = _as_number(observed)
    right = _as_number(cond.value)
    if left is None or right is None:
        return False
    if op == ConditionOp.GT:
        return left > right
    if op == ConditionOp.GE:
        return left >= right
    if op == ConditionOp.LT:
        return left < right
    return left <= right


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _equal(a: Any, b: Any) -> bool:
    na, nb = _as_number(a), _as_number(b)
    if na is not None and nb is not None:
        return na == nb
    return a == b


def _fact_satisfiable(conds: list[Condition]) -> bool:
    ops = {c.op for c in conds}
    constrained = any(c.op in (ConditionOp.EQ,) + ORDERING_OPS for c in conds)

    if ConditionOp.ABSENT in ops and (ConditionOp.PRESENT in ops or constrained):
        return False

    equals = [c.value for c in conds if c.op == ConditionOp.EQ]
    not_equals = [c.value for c in conds if c.op == ConditionOp.NE]
    for i, value in enumerate(equals):
        if any(not _equal(value, other) for other in equals[i + 1:]):
            return False

    lower: float | None = None
    lower_inclusive = True
    upper: float | None = None
    upper_inclusive = True
    for c in conds:
        if c.op not in ORDERING_OPS:
            continue
        bound = _as_number(c.value)
        if bound is None:
            return False
        if c.op in (ConditionOp.GT, ConditionOp.GE):
            inclusive = c.op == ConditionOp.GE
            if lower is None or bound > lower or (bound == lower and not inclusive):
                lower, lower_inclusive = bound, inclusive
        else:
            inclusive = c.op == ConditionOp.LE
            if upper is None or bound < upper or (bound == upper and not inclusive):
                upper, upper_inclusive = bound, inclusive

    if equals:
        value = equals[0]
        if any(_equal(value, ne) for ne in not_equals):
            return False
        if lower is None and upper is None:
            return True
        number = _as_number(value)
        if number is None:
            return False
        if lower is not None and (number < lower or (number == lower and not lower_inclusive)):
            return False
        if upper is not None and (number > upper or (number == upper and not upper_inclusive)):
            return False
        return True

    if lower is not None and upper is not None:
        if lower > upper:
            return False
        if lower == upper:
            if not (lower_inclusive and upper_inclusive):
                return False
            # The interval is a single point; a != on that point empties it.
            return not any(_equal(lower, ne) for ne in not_equals)
    return True
