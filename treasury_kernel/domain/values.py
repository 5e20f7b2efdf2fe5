"""
Values -- enumerations shared by models, services and pure rules.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Models store these as plain strings
    (``String(N)`` columns holding ``.value``); ``str`` subclassing keeps
    comparisons against loaded rows working in both directions.
"""

from decimal import Decimal
from enum import Enum


class AccountCategory(str, Enum):
    """Kinds of treasury account."""

    CASH = "cash"
    BANK = "bank"
    POSTAL = "postal"
    EQUITY = "equity"

    @property
    def is_liquid(self) -> bool:
        """Cash, bank and postal accounts make up the treasury position."""
        return self is not AccountCategory.EQUITY


class TargetType(str, Enum):
    """Entity kinds a posting can target."""

    ACCOUNT = "account"
    OBLIGATION = "obligation"


class EventKind(str, Enum):
    """Direction of a posting relative to its target's running total."""

    INFLOW = "inflow"
    OUTFLOW = "outflow"

    def signed(self, amount: Decimal) -> Decimal:
        """Signed contribution of ``amount`` to the target total."""
        return amount if self is EventKind.INFLOW else -amount


class GroupRole(str, Enum):
    """Role of a posting inside a multi-leg group."""

    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    PAYMENT = "payment"
    SETTLEMENT = "settlement"


class ObligationKind(str, Enum):
    RECEIVABLE = "receivable"
    PAYABLE = "payable"


class ObligationStatus(str, Enum):
    """Derived status of a payable/receivable; never stored."""

    OPEN = "open"
    PARTIALLY_SETTLED = "partially_settled"
    SETTLED = "settled"
    OVERDUE = "overdue"
    DISPUTED = "disputed"


class DepreciationMethod(str, Enum):
    STRAIGHT_LINE = "straight_line"
    DECLINING_BALANCE = "declining_balance"


class AssetStatus(str, Enum):
    IN_SERVICE = "in_service"
    FULLY_DEPRECIATED = "fully_depreciated"
    DISPOSED = "disposed"


class Regime(str, Enum):
    """Reporting regime tiers, lowest first."""

    MINIMAL_CASH_SIMPLE = "minimal_cash_simple"
    MINIMAL_CASH_FULL = "minimal_cash_full"
    SIMPLIFIED_ACCOUNTING = "simplified_accounting"
    FULL_ACCOUNTING = "full_accounting"


class Outcome(str, Enum):
    """Result of an operation that may legitimately do nothing."""

    APPLIED = "applied"
    NO_EFFECT = "no_effect"
