"""
Module: treasury_kernel.models.obligation
Responsibility: ORM persistence for payables and receivables and their
    paid-to-date running total.
Architecture position: Kernel > Models.

Invariants enforced:
    - remaining_amount == original_amount - paid_amount.
    - 0 <= paid_amount <= original_amount (BalanceLedger bounds check,
      evaluated in Decimal under the row lock).
    - paid_amount / remaining_amount are only moved by BalanceLedger's
      atomic SQL increment; direct attribute writes are rejected.

Status is NOT stored: it is derived on every read by
domain.classification.classify_obligation().
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from treasury_kernel.db.base import TrackedBase
from treasury_kernel.domain.values import ObligationKind


class Obligation(TrackedBase):
    """A payable or receivable with a due date."""

    __tablename__ = "obligations"

    __table_args__ = (
        CheckConstraint("original_amount > 0", name="ck_obligation_original_positive"),
        Index("idx_obligation_kind_due", "kind", "due_date"),
        Index("idx_obligation_reference", "reference"),
    )

    kind: Mapped[ObligationKind] = mapped_column(String(20), nullable=False)

    counterparty: Mapped[str] = mapped_column(String(255), nullable=False)

    reference: Mapped[str] = mapped_column(String(50), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    original_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    issue_date: Mapped[date] = mapped_column(nullable=False)

    due_date: Mapped[date] = mapped_column(nullable=False)

    is_disputed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Annual percentage used for late fees; zero means no late fee
    interest_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), nullable=False, default=Decimal("0")
    )

    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    last_payment_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Obligation {self.reference} {self.kind} "
            f"{self.paid_amount}/{self.original_amount}>"
        )

    @property
    def start_date(self) -> date:
        return self.issue_date
