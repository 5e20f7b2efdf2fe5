"""
Depreciation schedule evaluation (pure).

Covers straight line, declining balance, whole-month counting, the cap at
residual value and term validation.
"""

from datetime import date
from decimal import Decimal

import pytest

from treasury_kernel.domain.depreciation import DepreciationTerms, months_elapsed
from treasury_kernel.domain.values import DepreciationMethod
from treasury_kernel.exceptions import ValidationError

ACQUIRED = date(2024, 1, 15)


def _straight_line(cost="1200", life=36, residual="0") -> DepreciationTerms:
    return DepreciationTerms(
        acquisition_cost=Decimal(cost),
        acquisition_date=ACQUIRED,
        useful_life_months=life,
        residual_value=Decimal(residual),
    )


def _declining(cost="1000", life=12, residual="100") -> DepreciationTerms:
    return DepreciationTerms(
        acquisition_cost=Decimal(cost),
        acquisition_date=ACQUIRED,
        useful_life_months=life,
        residual_value=Decimal(residual),
        method=DepreciationMethod.DECLINING_BALANCE,
    )


class TestMonthsElapsed:
    def test_same_day_next_month(self):
        assert months_elapsed(ACQUIRED, date(2024, 2, 15)) == 1

    def test_day_before_anniversary(self):
        assert months_elapsed(ACQUIRED, date(2024, 2, 14)) == 0

    def test_before_start_is_zero(self):
        assert months_elapsed(ACQUIRED, date(2023, 12, 1)) == 0

    def test_across_years(self):
        assert months_elapsed(ACQUIRED, date(2025, 1, 15)) == 12

    def test_month_end_start_counts_from_last_day_of_short_month(self):
        assert months_elapsed(date(2024, 1, 31), date(2024, 2, 28)) == 0
        assert months_elapsed(date(2024, 1, 31), date(2024, 2, 29)) == 1
        assert months_elapsed(date(2023, 1, 31), date(2023, 2, 28)) == 1

    def test_month_end_start_keeps_own_day_in_long_month(self):
        assert months_elapsed(date(2024, 1, 31), date(2024, 3, 30)) == 1
        assert months_elapsed(date(2024, 1, 31), date(2024, 3, 31)) == 2

    def test_month_end_acquisition_depreciates_on_leap_day(self):
        terms = DepreciationTerms(
            acquisition_cost=Decimal("1200"),
            acquisition_date=date(2024, 1, 31),
            useful_life_months=12,
        )
        assert terms.book_value_as_of(date(2024, 2, 29)) == Decimal("1100")


class TestStraightLine:
    def test_twelve_of_thirty_six_months(self):
        terms = _straight_line()
        assert terms.accumulated_as_of(date(2025, 1, 15)) == Decimal("400")
        assert terms.book_value_as_of(date(2025, 1, 15)) == Decimal("800")

    def test_partial_month_does_not_count(self):
        # 11 whole months: 1200 * 11 / 36 = 366.666...
        assert _straight_line().book_value_as_of(date(2025, 1, 14)) == Decimal("833.33")

    def test_end_of_life(self):
        assert _straight_line().book_value_as_of(date(2027, 1, 15)) == Decimal("0")

    def test_capped_after_end_of_life(self):
        assert _straight_line(residual="200").book_value_as_of(date(2030, 1, 1)) == Decimal("200")

    def test_acquisition_day_is_full_cost(self):
        assert _straight_line().book_value_as_of(ACQUIRED) == Decimal("1200")

    def test_before_acquisition_is_zero(self):
        assert _straight_line().book_value_as_of(date(2024, 1, 14)) == Decimal("0")


class TestDecliningBalance:
    def test_first_month_charge(self):
        # 1000 * 2 / 12 = 166.67
        assert _declining().accumulated_as_of(date(2024, 2, 15)) == Decimal("166.67")

    def test_ends_exactly_at_residual(self):
        assert _declining().book_value_as_of(date(2025, 1, 15)) == Decimal("100")

    def test_book_value_monotonic_and_bounded(self):
        terms = _declining()
        book_values = [terms.book_value_as_of(date(2024 + (m // 12), m % 12 + 1, 15)) for m in range(13)]
        assert book_values == sorted(book_values, reverse=True)
        assert book_values[0] == Decimal("1000")
        assert book_values[-1] == Decimal("100")

    def test_accumulated_reaches_depreciable_base(self):
        terms = _declining()
        assert terms.accumulated_as_of(date(2026, 1, 15)) == terms.depreciable_base


class TestTermValidation:
    def test_zero_cost_rejected(self):
        with pytest.raises(ValidationError):
            _straight_line(cost="0")

    def test_zero_life_rejected(self):
        with pytest.raises(ValidationError):
            _straight_line(life=0)

    def test_residual_above_cost_rejected(self):
        with pytest.raises(ValidationError):
            _straight_line(residual="1500")

    def test_negative_residual_rejected(self):
        with pytest.raises(ValidationError):
            _straight_line(residual="-1")

    def test_datetime_rejected_as_acquisition_date(self):
        from datetime import datetime

        with pytest.raises(ValidationError):
            DepreciationTerms(Decimal("100"), datetime(2024, 1, 1), 12)
