"""Step earnings computation and streak helpers."""

from __future__ import annotations

from decimal import Decimal

import pytest

from steprewards.steps.service import compute_earnings
from steprewards.steps.streak_service import next_streak, streak_multiplier


class TestComputeEarnings:
    """Caps and rounding."""

    def test_ten_thousand_steps_is_one_dollar(self):
        assert compute_earnings(10_000, Decimal("1.0"), False) == (10_000, Decimal("1.00"))

    def test_free_step_cap(self):
        capped, earnings = compute_earnings(25_000, Decimal("1.0"), False)
        assert capped == 20_000
        assert earnings == Decimal("2.00")

    def test_free_earnings_cap_with_multiplier(self):
        capped, earnings = compute_earnings(20_000, Decimal("1.5"), False)
        assert capped == 20_000
        assert earnings == Decimal("2.00")

    def test_premium_caps(self):
        assert compute_earnings(50_000, Decimal("1.0"), True) == (40_000, Decimal("4.00"))
        assert compute_earnings(30_000, Decimal("1.2"), True) == (30_000, Decimal("3.60"))

    def test_multiplier_applied_below_cap(self):
        assert compute_earnings(8_000, Decimal("1.3"), False) == (8_000, Decimal("1.04"))

    @pytest.mark.parametrize(
        ("steps", "expected"),
        [(12_345, Decimal("1.23")), (12_355, Decimal("1.24")), (50, Decimal("0.01")), (49, Decimal("0.00"))],
    )
    def test_rounds_half_up_to_cents(self, steps, expected):
        assert compute_earnings(steps, Decimal("1.0"), False)[1] == expected

    def test_zero_steps(self):
        assert compute_earnings(0, Decimal("1.7"), True) == (0, Decimal("0.00"))


class TestStreak:
    """Streak transitions and multipliers."""

    def test_threshold_met_extends(self):
        assert next_streak(3, 1_000) == 4

    def test_below_threshold_resets(self):
        assert next_streak(3, 999) == 0

    def test_missing_record_resets(self):
        assert next_streak(5, None) == 0

    def test_capped_at_seven(self):
        assert next_streak(7, 15_000) == 7
        assert next_streak(6, 15_000) == 7

    @pytest.mark.parametrize(("streak", "multiplier"), [(0, "1.0"), (3, "1.3"), (7, "1.7")])
    def test_multiplier(self, streak, multiplier):
        assert streak_multiplier(streak) == Decimal(multiplier)
