"""Tests for predicate compilation and condition evaluation."""

from __future__ import annotations

import pytest

from ruleforge.core.errors import InvalidRule
from ruleforge.core.models import Condition, ConditionOp, FactSnapshot
from ruleforge.rules.compiler import compile_conditions, condition_holds, conditions_satisfiable


def _facts(*tags: str, **values) -> FactSnapshot:
    return FactSnapshot(target_id="github:acme/api", tags=frozenset(tags), values=values)


class TestCompileConditions:
    def test_sorts_and_deduplicates(self):
        conds = [
            Condition("is-public"),
            Condition("has-ci", ConditionOp.ABSENT),
            Condition("is-public"),
        ]
        compiled = compile_conditions(conds)
        assert compiled == (Condition("has-ci", ConditionOp.ABSENT), Condition("is-public"))

    def test_same_body_in_different_order_compiles_equal(self):
        a = compile_conditions([Condition("x"), Condition("y", ConditionOp.GT, 3)])
        b = compile_conditions([Condition("y", ConditionOp.GT, 3), Condition("x")])
        assert a == b

    def test_value_op_without_value_is_invalid(self):
        with pytest.raises(InvalidRule):
            compile_conditions([Condition("open-issues", ConditionOp.GT)])

    def test_ordering_against_non_number_is_invalid(self):
        with pytest.raises(InvalidRule):
            compile_conditions([Condition("open-issues", ConditionOp.GT, "many")])

    def test_present_and_absent_is_unsatisfiable(self):
        with pytest.raises(InvalidRule, match="never hold"):
            compile_conditions([Condition("x"), Condition("x", ConditionOp.ABSENT)])

    def test_empty_interval_is_unsatisfiable(self):
        with pytest.raises(InvalidRule):
            compile_conditions([
                Condition("n", ConditionOp.GT, 10),
                Condition("n", ConditionOp.LT, 5),
            ])


class TestSatisfiability:
    def test_absent_with_ne_is_satisfiable(self):
        assert conditions_satisfiable([
            Condition("visibility", ConditionOp.ABSENT),
            Condition("visibility", ConditionOp.NE, "public"),
        ])

    def test_conflicting_equalities(self):
        assert not conditions_satisfiable([
            Condition("visibility", ConditionOp.EQ, "public"),
            Condition("visibility", ConditionOp.EQ, "private"),
        ])

    def test_eq_and_ne_same_value(self):
        assert not conditions_satisfiable([
            Condition("n", ConditionOp.EQ, 3),
            Condition("n", ConditionOp.NE, 3),
        ])

    def test_eq_inside_bounds(self):
        assert conditions_satisfiable([
            Condition("n", ConditionOp.EQ, 5),
            Condition("n", ConditionOp.GE, 5),
            Condition("n", ConditionOp.LT, 6),
        ])

    def test_eq_outside_bounds(self):
        assert not conditions_satisfiable([
            Condition("n", ConditionOp.EQ, 5),
            Condition("n", ConditionOp.GT, 5),
        ])

    def test_point_interval(self):
        assert conditions_satisfiable([
            Condition("n", ConditionOp.GE, 5),
            Condition("n", ConditionOp.LE, 5),
        ])
        assert not conditions_satisfiable([
            Condition("n", ConditionOp.GE, 5),
            Condition("n", ConditionOp.LT, 5),
        ])

    def test_point_interval_excluded_by_ne(self):
        assert not conditions_satisfiable([
            Condition("n", ConditionOp.GE, 5),
            Condition("n", ConditionOp.LE, 5),
            Condition("n", ConditionOp.NE, 5),
        ])

    def test_independent_facts(self):
        assert conditions_satisfiable([
            Condition("a"),
            Condition("b", ConditionOp.ABSENT),
            Condition("c", ConditionOp.GT, 1),
        ])


class TestConditionHolds:
    def test_present_and_absent_tags(self):
        facts = _facts("is-public")
        assert condition_holds(Condition("is-public"), facts)
        assert not condition_holds(Condition("is-public", ConditionOp.ABSENT), facts)
        assert condition_holds(Condition("has-ci", ConditionOp.ABSENT), facts)

    def test_present_counts_values(self):
        facts = _facts(**{"open-issues": 0})
        assert condition_holds(Condition("open-issues"), facts)

    def test_comparisons(self):
        facts = _facts(**{"open-issues": 12})
        assert condition_holds(Condition("open-issues", ConditionOp.GT, 10), facts)
        assert condition_holds(Condition("open-issues", ConditionOp.GE, 12), facts)
        assert not condition_holds(Condition("open-issues", ConditionOp.LT, 12), facts)
        assert condition_holds(Condition("open-issues", ConditionOp.LE, "12"), facts)

    def test_numeric_equality_across_types(self):
        facts = _facts(**{"maintainers": 2})
        assert condition_holds(Condition("maintainers", ConditionOp.EQ, 2.0), facts)

    def test_missing_fact_only_satisfies_ne(self):
        facts = _facts()
        assert condition_holds(Condition("visibility", ConditionOp.NE, "public"), facts)
        assert not condition_holds(Condition("visibility", ConditionOp.EQ, "public"), facts)
        assert not condition_holds(Condition("n", ConditionOp.GT, 0), facts)

    def test_ordering_against_non_numeric_fact_is_false(self):
        facts = _facts(**{"visibility": "public"})
        assert not condition_holds(Condition("visibility", ConditionOp.GT, 1), facts)
