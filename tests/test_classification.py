"""Tests for binary market detection and legacy position mapping."""

from __future__ import annotations

import pytest

from parimutuel_core.wagering.classification import is_binary_market, outcome_for_position


class TestIsBinaryMarket:
    @pytest.mark.parametrize("labels", [
        ["Yes", "No"],
        ["no", "yes"],
        ["  YES ", "No"],
        ["Up", "Down"],
    ])
    def test_binary(self, labels):
        assert is_binary_market(labels)

    @pytest.mark.parametrize("labels", [
        ["Yes", "No", "Maybe"],
        ["Yes", "Down"],
        ["Turkey", "Switzerland"],
        ["Yes"],
        [],
    ])
    def test_not_binary(self, labels):
        assert not is_binary_market(labels)


class TestOutcomeForPosition:
    def test_maps_case_insensitively(self):
        outcomes = {11: "Yes", 12: "No"}
        assert outcome_for_position(outcomes, "yes") == 11
        assert outcome_for_position(outcomes, "NO") == 12

    def test_up_down(self):
        assert outcome_for_position({5: "Up", 6: "Down"}, "down") == 6

    def test_unknown_position(self):
        assert outcome_for_position({11: "Yes", 12: "No"}, "up") is None

    def test_multi_outcome_market_rejects_positions(self):
        outcomes = {1: "Turkey", 2: "Switzerland", 3: "Other"}
        assert outcome_for_position(outcomes, "Turkey") is None
