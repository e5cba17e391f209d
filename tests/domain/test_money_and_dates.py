"""
Money and calendar primitives.

Verifies:
- Float construction is rejected
- Half-up rounding to the cent
- Month stepping clamps to the last day of shorter months
- Cadence roll-forward and overdue day counts
"""

from datetime import date
from decimal import Decimal

import pytest

from settlement_kernel.domain.dates import (
    ScheduleInterval,
    add_months,
    days_overdue,
    first_step_on_or_after,
    month_bounds,
    step_date,
)
from settlement_kernel.domain.money import (
    floor_money,
    percent_of,
    to_money,
    to_percent,
)


class TestToMoney:
    """Coercion of amounts to 2-place Decimals."""

    def test_string_input(self):
        """Strings are parsed and quantized."""
        assert to_money("100.5") == Decimal("100.50")

    def test_half_up(self):
        """Half a cent rounds up."""
        assert to_money(Decimal("0.005")) == Decimal("0.01")

    def test_float_rejected(self):
        """Floats never enter the ledger."""
        with pytest.raises(TypeError):
            to_money(0.1)

    def test_bool_rejected(self):
        """bool is an int subclass but not an amount."""
        with pytest.raises(TypeError):
            to_money(True)

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            to_money("ten reais")

    def test_infinity_rejected(self):
        with pytest.raises(ValueError):
            to_money(Decimal("Infinity"))


class TestPercentHelpers:

    def test_percent_six_places(self):
        assert to_percent("0.0333333") == Decimal("0.033333")

    def test_percent_of(self):
        """2% of 900.00 is 18.00."""
        assert percent_of(Decimal("900.00"), Decimal("2")) == Decimal("18.00")

    def test_floor_truncates(self):
        assert floor_money(Decimal("333.3333")) == Decimal("333.33")


class TestAddMonths:
    """Calendar-month stepping anchored on the original day."""

    def test_plain_step(self):
        assert add_months(date(2024, 1, 10), 1) == date(2024, 2, 10)

    def test_clamps_leap_february(self):
        """Jan 31 + 1 month lands on Feb 29 in a leap year."""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_clamps_common_february(self):
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_returns_to_original_day(self):
        """Clamping does not drift: two steps from Jan 31 is Mar 31."""
        assert add_months(date(2024, 1, 31), 2) == date(2024, 3, 31)

    def test_year_rollover(self):
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


class TestCadence:
    """Cadence stepping and roll-forward to the first date on or after as_of."""

    def test_biweekly_step(self):
        assert step_date(date(2024, 1, 1), 2, ScheduleInterval.BIWEEKLY) == date(2024, 1, 29)

    def test_weekly_step(self):
        assert step_date(date(2024, 1, 1), 1, ScheduleInterval.WEEKLY) == date(2024, 1, 8)

    def test_future_start_is_not_shifted(self):
        """A start date on or after as_of needs no roll-forward."""
        assert first_step_on_or_after(
            date(2024, 2, 1), date(2024, 1, 15), ScheduleInterval.MONTHLY
        ) == 0

    def test_past_start_rolls_to_next_month(self):
        """Start Jan 10, as_of Jan 15: first cadence date is Feb 10."""
        k = first_step_on_or_after(date(2024, 1, 10), date(2024, 1, 15), ScheduleInterval.MONTHLY)
        assert k == 1
        assert step_date(date(2024, 1, 10), k, ScheduleInterval.MONTHLY) == date(2024, 2, 10)

    def test_cadence_date_equal_to_as_of_is_kept(self):
        k = first_step_on_or_after(date(2023, 11, 15), date(2024, 1, 15), ScheduleInterval.MONTHLY)
        assert step_date(date(2023, 11, 15), k, ScheduleInterval.MONTHLY) == date(2024, 1, 15)

    def test_weekly_roll_forward(self):
        k = first_step_on_or_after(date(2024, 1, 1), date(2024, 1, 20), ScheduleInterval.WEEKLY)
        assert step_date(date(2024, 1, 1), k, ScheduleInterval.WEEKLY) == date(2024, 1, 22)


class TestDaysOverdue:

    def test_before_due(self):
        assert days_overdue(date(2024, 1, 20), date(2024, 1, 15)) == 0

    def test_on_due_date(self):
        assert days_overdue(date(2024, 1, 15), date(2024, 1, 15)) == 0

    def test_after_due(self):
        assert days_overdue(date(2024, 1, 5), date(2024, 1, 15)) == 10


class TestMonthBounds:

    def test_february_leap(self):
        assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_bad_month(self):
        with pytest.raises(ValueError):
            month_bounds(2024, 13)
