"""
Classification -- derived status and tier rules.

Responsibility:
    Maps running totals and dates to labels: obligation status, overdue days
    and late fees, asset status, and the reporting regime tier for a
    turnover figure.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O, no clock access.  "Today"
    is always an argument.  Callers re-evaluate on every read; nothing here
    is cached or stored.

Invariants enforced:
    - Obligation status precedence: disputed > settled > overdue >
      partially settled > open.
    - Regime cutoffs are strictly ascending; a figure equal to a cutoff
      belongs to the lower tier; above the top cutoff is the highest tier.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from treasury_kernel.domain.values import AssetStatus, ObligationStatus, Regime
from treasury_kernel.exceptions import ValidationError

_CENT = Decimal("0.01")
_ZERO = Decimal("0")
_DAYS_PER_YEAR = Decimal("365")


def classify_obligation(
    original: Decimal,
    paid: Decimal,
    due_date: date,
    today: date,
    disputed: bool = False,
) -> ObligationStatus:
    """
    Status of a payable/receivable on ``today``.

    Overdue means strictly past the due date with something still owed; the
    due date itself is not overdue.
    """
    if disputed:
        return ObligationStatus.DISPUTED
    if paid >= original:
        return ObligationStatus.SETTLED
    if today > due_date:
        return ObligationStatus.OVERDUE
    if paid > _ZERO:
        return ObligationStatus.PARTIALLY_SETTLED
    return ObligationStatus.OPEN


def days_overdue(due_date: date, today: date, remaining: Decimal) -> int:
    """Whole days past due, zero when settled or not yet due."""
    if remaining <= _ZERO or today <= due_date:
        return 0
    return (today - due_date).days


def late_fee(remaining: Decimal, annual_rate_percent: Decimal, overdue_days: int) -> Decimal:
    """Simple daily interest on the remaining amount, rounded to cents."""
    if overdue_days <= 0 or remaining <= _ZERO or annual_rate_percent <= _ZERO:
        return _ZERO.quantize(_CENT)
    daily_rate = annual_rate_percent / _DAYS_PER_YEAR / Decimal("100")
    return (remaining * daily_rate * overdue_days).quantize(_CENT, rounding=ROUND_HALF_UP)


def classify_asset(book_value: Decimal, residual_value: Decimal, disposed: bool) -> AssetStatus:
    if disposed:
        return AssetStatus.DISPOSED
    if book_value <= residual_value:
        return AssetStatus.FULLY_DEPRECIATED
    return AssetStatus.IN_SERVICE


@dataclass(frozen=True)
class RegimeThresholds:
    """
    Three ascending turnover cutoffs separating the four regime tiers.

    Raises:
        ValidationError: cutoffs are negative or not strictly ascending.
    """

    first: Decimal
    second: Decimal
    third: Decimal

    def __post_init__(self) -> None:
        values = (self.first, self.second, self.third)
        if any(not isinstance(v, Decimal) for v in values):
            raise ValidationError("regime thresholds must be Decimal", field="regime_thresholds")
        if self.first < _ZERO:
            raise ValidationError("regime thresholds must not be negative", field="regime_thresholds")
        if not (self.first < self.second < self.third):
            raise ValidationError(
                "regime thresholds must be strictly ascending "
                f"(got {self.first}, {self.second}, {self.third})",
                field="regime_thresholds",
            )

    def as_tuple(self) -> tuple[Decimal, Decimal, Decimal]:
        return (self.first, self.second, self.third)


DEFAULT_REGIME_THRESHOLDS = RegimeThresholds(
    first=Decimal("10000000"),
    second=Decimal("20000000"),
    third=Decimal("30000000"),
)

_TIERS = (
    Regime.MINIMAL_CASH_SIMPLE,
    Regime.MINIMAL_CASH_FULL,
    Regime.SIMPLIFIED_ACCOUNTING,
)


def classify_regime(figure: Decimal, thresholds: RegimeThresholds) -> Regime:
    """Lowest tier whose cutoff is >= ``figure``; FULL_ACCOUNTING above all cutoffs."""
    for tier, cutoff in zip(_TIERS, thresholds.as_tuple()):
        if figure <= cutoff:
            return tier
    return Regime.FULL_ACCOUNTING
