#!/usr/bin/env python3
"""Tests for flag-gated descriptor construction."""

import pytest

from tiercompose_conditionals import (
    ZERO_OR_MANY, ZERO_OR_ONE, Branch, build, compose_groups, one_of,
)
from tiercompose_errors import AmbiguousComposition


class TestBuild:
    """Zero-or-one and zero-or-many construction."""

    def test_false_flag_builds_nothing(self):
        """The template must not even be called when the flag is off."""
        calls = []
        assert build(False, lambda: calls.append(1)) == []
        assert calls == []

    def test_zero_or_one(self):
        assert build(True, lambda: "x") == ["x"]

    def test_zero_or_many_over_mapping(self):
        built = build(True, lambda key, value: (key, value), ZERO_OR_MANY, {"a": 1, "b": 2})
        assert built == [("a", 1), ("b", 2)]

    def test_zero_or_many_over_sequence(self):
        built = build(True, lambda index, value: (index, value), ZERO_OR_MANY, ["x", "y"])
        assert built == [(0, "x"), (1, "y")]

    def test_zero_or_many_without_items(self):
        assert build(True, lambda key, value: key, ZERO_OR_MANY) == []

    def test_zero_or_many_disabled(self):
        assert build(False, lambda key, value: key, ZERO_OR_MANY, {"a": 1}) == []

    def test_unknown_multiplicity(self):
        with pytest.raises(ValueError):
            build(True, lambda: 1, "exactly-two")


class TestOneOf:
    """Mutually exclusive branches."""

    def test_selects_enabled_branch(self):
        built = one_of(
            Branch(False, lambda: "forward", label="forward"),
            Branch(True, lambda: "redirect", label="redirect"),
        )
        assert built == ["redirect"]

    def test_exclusive_for_both_flag_values(self):
        """Exactly one branch is built whichever way the flag goes."""
        for flag in (True, False):
            built = one_of(
                Branch(not flag, lambda: "forward"),
                Branch(flag, lambda: "redirect"),
            )
            assert len(built) == 1

    def test_two_enabled_branches_are_ambiguous(self):
        with pytest.raises(AmbiguousComposition) as excinfo:
            one_of(
                Branch(True, lambda: "a", label="a"),
                Branch(True, lambda: "b", label="b"),
            )
        assert "got 2" in str(excinfo.value)

    def test_no_enabled_branch_is_ambiguous(self):
        with pytest.raises(AmbiguousComposition):
            one_of(Branch(False, lambda: "a"), Branch(False, lambda: "b"))

    def test_many_branch(self):
        built = one_of(
            Branch(True, lambda key, value: key, ZERO_OR_MANY, {"x": 1, "y": 2}),
            Branch(False, lambda: "never", ZERO_OR_ONE),
        )
        assert built == ["x", "y"]


class TestComposeGroups:
    def test_concatenates_in_order(self):
        assert compose_groups([1], [], [2, 3]) == [1, 2, 3]
