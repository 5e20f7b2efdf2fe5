"""
Depreciation -- pure schedule evaluation for amortized assets.

Responsibility:
    Given an asset's terms, compute accumulated depreciation and book value
    as of any date.  AssetService persists the result; the
    HistoricalReconstructor evaluates the same schedule for past dates.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Only full elapsed months depreciate (acquired 15 Jan: first charge
      counts on 15 Feb; acquired 31 Jan: on 29 Feb in a leap year).
    - Accumulated depreciation is non-decreasing in time and capped at
      acquisition_cost - residual_value, reached exactly at the end of the
      useful life.
    - Monetary results are quantized to cents (ROUND_HALF_UP).

Failure modes:
    - ValidationError for non-positive cost or life, negative residual, or
      residual above cost.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from treasury_kernel.domain.values import DepreciationMethod
from treasury_kernel.exceptions import ValidationError

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


def _cents(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def months_elapsed(start: date, as_of: date) -> int:
    """
    Whole calendar months from ``start`` to ``as_of``; zero if as_of precedes
    start.  A start day missing from the as_of month counts from that
    month's last day (31 Jan + 1 month = 29 Feb 2024).
    """
    months = (as_of.year - start.year) * 12 + (as_of.month - start.month)
    anniversary_day = min(start.day, calendar.monthrange(as_of.year, as_of.month)[1])
    if as_of.day < anniversary_day:
        months -= 1
    return max(months, 0)


def straight_line_accumulated(base: Decimal, life_months: int, months: int) -> Decimal:
    if months >= life_months:
        return base
    return min(base, _cents(base * months / life_months))


def declining_balance_accumulated(
    cost: Decimal,
    residual: Decimal,
    life_months: int,
    months: int,
    factor: Decimal = Decimal("2"),
) -> Decimal:
    """
    Declining balance at ``factor / life_months`` per month on net book
    value.  The last month of the useful life writes the remainder down to
    residual so the schedule always ends at residual value.
    """
    rate = factor / Decimal(life_months)
    net = cost
    for month in range(1, min(months, life_months) + 1):
        headroom = net - residual
        if headroom <= _ZERO:
            break
        if month == life_months:
            charge = headroom
        else:
            charge = min(_cents(net * rate), headroom)
        net -= charge
    return cost - net


@dataclass(frozen=True)
class DepreciationTerms:
    """Immutable inputs of a depreciation schedule."""

    acquisition_cost: Decimal
    acquisition_date: date
    useful_life_months: int
    residual_value: Decimal = _ZERO
    method: DepreciationMethod = DepreciationMethod.STRAIGHT_LINE
    declining_factor: Decimal = Decimal("2")

    def __post_init__(self) -> None:
        if not isinstance(self.acquisition_date, date) or isinstance(self.acquisition_date, datetime):
            raise ValidationError("acquisition date must be a date", field="acquisition_date")
        if not isinstance(self.useful_life_months, int) or isinstance(self.useful_life_months, bool):
            raise ValidationError("useful life must be a whole number of months", field="useful_life_months")
        if self.acquisition_cost <= _ZERO:
            raise ValidationError("acquisition cost must be positive", field="acquisition_cost")
        if self.useful_life_months < 1:
            raise ValidationError("useful life must be at least one month", field="useful_life_months")
        if self.residual_value < _ZERO:
            raise ValidationError("residual value must not be negative", field="residual_value")
        if self.residual_value > self.acquisition_cost:
            raise ValidationError(
                "residual value must not exceed acquisition cost", field="residual_value"
            )
        if self.declining_factor <= _ZERO:
            raise ValidationError("declining factor must be positive", field="declining_factor")

    @classmethod
    def from_asset(cls, asset) -> "DepreciationTerms":
        """Terms of anything shaped like a persisted AmortizedAsset."""
        return cls(
            acquisition_cost=asset.acquisition_cost,
            acquisition_date=asset.acquisition_date,
            useful_life_months=asset.useful_life_months,
            residual_value=asset.residual_value,
            method=DepreciationMethod(asset.method),
            declining_factor=asset.declining_factor,
        )

    @property
    def depreciable_base(self) -> Decimal:
        return self.acquisition_cost - self.residual_value

    def accumulated_as_of(self, as_of: date) -> Decimal:
        """Accumulated depreciation on ``as_of`` (zero before acquisition)."""
        months = months_elapsed(self.acquisition_date, as_of)
        if months == 0:
            return _ZERO
        if DepreciationMethod(self.method) is DepreciationMethod.DECLINING_BALANCE:
            return declining_balance_accumulated(
                self.acquisition_cost,
                self.residual_value,
                self.useful_life_months,
                months,
                self.declining_factor,
            )
        return straight_line_accumulated(self.depreciable_base, self.useful_life_months, months)

    def book_value_as_of(self, as_of: date) -> Decimal:
        """Carrying value on ``as_of``; zero before the asset was acquired."""
        if as_of < self.acquisition_date:
            return _ZERO
        return self.acquisition_cost - self.accumulated_as_of(as_of)
