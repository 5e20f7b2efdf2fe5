"""
Module: treasury_kernel.models.account
Responsibility: ORM persistence for treasury accounts (cash, bank, postal,
    equity) and their running balance.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

Invariants enforced:
    - balance == opening_balance + sum of signed deltas of active postings.
      Maintained by BalanceLedger through an atomic SQL increment; the ORM
      guard in db/immutability.py rejects any attribute write to balance.
    - Accounts are never deleted; deactivation is the only retirement path.
    - At most one active equity account (AccountService).
    - Bank accounts carry an account number (AccountService).

Audit relevance:
    reconciled_balance / last_reconciled_at hold the last externally
    confirmed figure.  They are a snapshot, not the book balance.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from treasury_kernel.db.base import TrackedBase
from treasury_kernel.domain.values import AccountCategory


class Account(TrackedBase):
    """
    A treasury account holding a running balance.

    Contract:
        ``balance`` is derived state.  Only BalanceLedger changes it, via
        ``UPDATE accounts SET balance = balance + :delta`` under a row lock.

    Guarantees:
        - currency is an upper-case ISO 4217 code.
        - opening_date bounds the earliest valid posting date.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        Index("idx_account_category", "category"),
        Index("idx_account_active", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[AccountCategory] = mapped_column(String(20), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    opening_date: Mapped[date] = mapped_column(nullable=False)

    balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_movement_at: Mapped[datetime | None] = mapped_column(nullable=True)

    reconciled_balance: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    last_reconciled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.name} ({self.category}) {self.balance} {self.currency}>"

    @property
    def start_date(self) -> date:
        return self.opening_date
