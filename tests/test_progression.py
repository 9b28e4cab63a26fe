"""
Tests for utils/progression.py

Level curve, multipliers and the compounding unit calculator.
"""

import math

import pytest

from shared.schemas.python.models import Achievement
from utils.progression import (
    InvalidGoalError,
    achievement_bonus,
    bonus_multiplier_for,
    level_bonus,
    level_from_xp,
    level_requirement,
    projected_balance,
    streak_multiplier,
    total_growth_multiplier,
    units_completed,
)


class TestLevelCurve:
    """Tests for level_from_xp and level_requirement."""

    def test_zero_xp_is_level_one(self):
        info = level_from_xp(0)
        assert info.level == 1
        assert info.current_level_xp == 0
        assert info.next_level_xp == 100
        assert info.progress_percent == 0

    def test_exactly_one_hundred_reaches_level_two(self):
        info = level_from_xp(100)
        assert info.level == 2
        assert info.current_level_xp == 0
        assert info.next_level_xp == 150

    @pytest.mark.parametrize("level,expected", [
        (1, 100),
        (2, 150),
        (3, 225),
        (4, 337),
        (5, 506),
    ])
    def test_requirement_is_floored_geometric(self, level, expected):
        assert level_requirement(level) == expected

    def test_partial_progress(self):
        info = level_from_xp(175)
        assert info.level == 2
        assert info.current_level_xp == 75
        assert info.progress_percent == pytest.approx(50.0)
        assert info.xp_to_next_level == 75

    def test_level_is_monotonic_in_xp(self):
        levels = [level_from_xp(xp).level for xp in range(0, 5000, 7)]
        assert levels == sorted(levels)

    def test_negative_xp_rejected(self):
        with pytest.raises(ValueError):
            level_from_xp(-1)


class TestMultipliers:
    """Tests for the streak, level and achievement multipliers."""

    @pytest.mark.parametrize("streak,expected", [
        (0, 1.0),
        (2, 1.0),
        (3, 1.1),
        (6, 1.1),
        (7, 1.25),
        (13, 1.25),
        (14, 1.5),
        (29, 1.5),
        (30, 2.0),
        (59, 2.0),
        (60, 2.5),
        (89, 2.5),
        (90, 3.0),
        (365, 3.0),
    ])
    def test_streak_multiplier_boundaries(self, streak, expected):
        assert streak_multiplier(streak) == expected

    def test_negative_streak_rejected(self):
        with pytest.raises(ValueError):
            streak_multiplier(-1)

    @pytest.mark.parametrize("level,expected", [(0, 1.0), (1, 1.05), (10, 1.5)])
    def test_level_bonus(self, level, expected):
        assert level_bonus(level) == pytest.approx(expected)

    def test_empty_achievement_bonus_is_identity(self):
        assert achievement_bonus([]) == 1.0

    def test_explicit_multiplier_beats_rarity(self):
        assert bonus_multiplier_for({"bonus_multiplier": 1.3, "rarity": "common"}) == 1.3

    @pytest.mark.parametrize("rarity,expected", [
        ("common", 1.02),
        ("rare", 1.05),
        ("epic", 1.1),
        ("legendary", 1.2),
        (None, 1.02),
    ])
    def test_rarity_fallback(self, rarity, expected):
        assert bonus_multiplier_for({"rarity": rarity}) == expected

    def test_achievement_bonus_is_product(self):
        unlocked = [
            Achievement(id="a", name="A", requirement_type="streak", requirement_value=3, rarity="rare"),
            Achievement(id="b", name="B", requirement_type="level", requirement_value=5, bonus_multiplier=1.1),
        ]
        assert achievement_bonus(unlocked) == pytest.approx(1.05 * 1.1)

    def test_total_growth_multiplier(self):
        result = total_growth_multiplier(2.0, 14, 2, [{"bonus_multiplier": 1.1}])
        assert result == pytest.approx(2.0 * 1.5 * 1.1 * 1.1)

    def test_negative_base_rejected(self):
        with pytest.raises(ValueError):
            total_growth_multiplier(-1.0, 0, 1, [])


class TestUnitsCompleted:
    """Tests for the compounding unit calculator."""

    def test_one_unit_of_growth(self):
        assert units_completed(1000, 1000 * 1.08, 8) == 1

    def test_no_growth_is_zero_units(self):
        assert units_completed(1000, 1000, 8) == 0

    def test_exact_compounded_boundaries_count(self):
        assert units_completed(1000, 1000 * 1.1 ** 5, 10) == 5

    def test_just_below_boundary(self):
        assert units_completed(1000, 1209.99, 10) == 1

    def test_loss_clamps_to_zero(self):
        assert units_completed(1000, 500, 8) == 0

    def test_wiped_out_capital_is_zero(self):
        assert units_completed(1000, 0, 8) == 0
        assert units_completed(1000, -50, 8) == 0

    def test_clamped_to_total_units(self):
        assert units_completed(1000, 10_000, 10, total_units=3) == 3

    @pytest.mark.parametrize("start,pct", [(0, 8), (-10, 8), (1000, 0), (1000, -5)])
    def test_invalid_goal_inputs(self, start, pct):
        with pytest.raises(InvalidGoalError):
            units_completed(start, 1000, pct)

    def test_projected_balance(self):
        assert projected_balance(1000, 10, 2) == pytest.approx(1210)
        assert math.isclose(projected_balance(500, 8, 0), 500)
