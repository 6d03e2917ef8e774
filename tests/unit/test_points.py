"""Unit tests for the points calculator."""

from __future__ import annotations

import pytest

from fitrank.ranking.points import (
    FRIEND_WEIGHT,
    GROUP_WEIGHT,
    POINTS_CEILING,
    STREAK_WEIGHT,
    WORKOUT_WEIGHT,
    ActivitySnapshot,
    calculate_points,
    points_for,
    points_formula,
)


class TestCalculatePoints:
    """Weighted sum of activity counters."""

    def test_all_zero(self):
        assert calculate_points(0, 0, 0, 0) == 0

    def test_weights_applied(self):
        """3 workouts, 2-day streak, 1 group, 4 friends."""
        assert calculate_points(3, 2, 1, 4) == 3 * 10 + 2 * 5 + 1 * 15 + 4 * 5

    @pytest.mark.parametrize(
        ("args", "weight"),
        [
            ((1, 0, 0, 0), WORKOUT_WEIGHT),
            ((0, 1, 0, 0), STREAK_WEIGHT),
            ((0, 0, 1, 0), GROUP_WEIGHT),
            ((0, 0, 0, 1), FRIEND_WEIGHT),
        ],
    )
    def test_each_counter_contributes_its_weight(self, args, weight):
        assert calculate_points(*args) == weight

    def test_monotone_in_each_counter(self):
        base = calculate_points(5, 5, 5, 5)
        assert calculate_points(6, 5, 5, 5) > base
        assert calculate_points(5, 6, 5, 5) > base
        assert calculate_points(5, 5, 6, 5) > base
        assert calculate_points(5, 5, 5, 6) > base

    def test_negative_inputs_count_as_zero(self):
        assert calculate_points(-3, -1, 2, -7) == 2 * GROUP_WEIGHT

    def test_saturates_at_ceiling(self):
        huge = 10**12
        assert calculate_points(huge, huge, huge, huge) == POINTS_CEILING

    def test_points_for_snapshot(self):
        snap = ActivitySnapshot(workouts_count=2, streak=1, groups_count=0, friends_count=1)
        assert points_for(snap) == 2 * 10 + 5 + 5


class TestPointsFormula:
    def test_weights_exposed(self):
        formula = points_formula()
        assert formula["weights"] == {"workouts": 10, "streak": 5, "groups": 15, "friends": 5}
        assert formula["ceiling"] == POINTS_CEILING

    def test_formula_text_matches_weights(self):
        text = points_formula()["formula"]
        assert "workouts × 10" in text
        assert "groups × 15" in text
