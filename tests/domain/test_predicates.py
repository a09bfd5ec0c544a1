"""Tests for predicate nodes."""

from __future__ import annotations

import dataclasses

import pytest

from fluentorm.domain.predicates import (
    And,
    Comparison,
    Not,
    Operator,
    Or,
    combine,
)

HACKER = Comparison("hacker", Operator.EQ, True)
AGE_4 = Comparison("age", Operator.EQ, 4)
NAMED = Comparison("name", Operator.IS_NOT_NULL)


class TestRendering:
    def test_comparison(self) -> None:
        assert str(AGE_4) == "(age = 4)"
        assert str(Comparison("name", Operator.EQ, "kevin")) == "(name = 'kevin')"

    def test_unary_comparison_has_no_value(self) -> None:
        assert str(NAMED) == "(name IS NOT NULL)"

    def test_nested_grouping_is_visible(self) -> None:
        tree = Or(And(HACKER, NAMED), Not(AGE_4))
        assert str(tree) == (
            "(((hacker = True) AND (name IS NOT NULL)) OR (NOT (age = 4)))"
        )


class TestCombine:
    def test_first_term_stands_alone(self) -> None:
        assert combine(None, HACKER, disjunction=True) is HACKER

    def test_conjunction(self) -> None:
        assert combine(HACKER, AGE_4, disjunction=False) == And(HACKER, AGE_4)

    def test_disjunction_takes_whole_left_side(self) -> None:
        left = And(HACKER, NAMED)
        assert combine(left, AGE_4, disjunction=True) == Or(left, AGE_4)


class TestNodes:
    def test_nodes_are_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            AGE_4.value = 5  # type: ignore[misc]

    def test_structural_equality(self) -> None:
        assert Comparison("age", Operator.EQ, 4) == AGE_4
        assert And(HACKER, AGE_4) != Or(HACKER, AGE_4)
