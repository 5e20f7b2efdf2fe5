"""
Module: treasury_kernel.selectors.obligation_selector
Responsibility: Read views over payables and receivables with their
    derived status, overdue days and late fee, plus due-date queries and
    the aging report.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Status is derived on every read from (original, paid, due date,
      today, disputed) by domain.classification.  It is never stored, so it
      cannot go stale.
    - "today" is always passed in; selectors never read a clock.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from treasury_kernel.domain.aging import STANDARD_BUCKETS, AgeBucket, AgingReport, build_aging_report
from treasury_kernel.domain.classification import classify_obligation, days_overdue, late_fee
from treasury_kernel.domain.values import ObligationKind, ObligationStatus
from treasury_kernel.exceptions import ObligationNotFoundError
from treasury_kernel.models.obligation import Obligation
from treasury_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ObligationView:
    obligation_id: UUID
    reference: str
    kind: ObligationKind
    counterparty: str
    currency: str
    original_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    issue_date: date
    due_date: date
    status: ObligationStatus
    days_overdue: int
    late_fee: Decimal
    is_active: bool

    @property
    def amount_due(self) -> Decimal:
        """Remaining amount plus the late fee accrued so far."""
        return self.remaining_amount + self.late_fee


class ObligationSelector(BaseSelector):
    """
    Contract:
        Every view is computed against the ``today`` argument.  The same
        obligation read on two different days may carry two different
        statuses without any write in between.
    """

    def view(self, obligation_id: UUID, today: date) -> ObligationView:
        obligation = self.session.get(Obligation, obligation_id, populate_existing=True)
        if obligation is None:
            raise ObligationNotFoundError(str(obligation_id))
        return self._view(obligation, today)

    def status(self, obligation_id: UUID, today: date) -> ObligationStatus:
        return self.view(obligation_id, today).status

    def overdue(self, today: date, kind: ObligationKind | None = None) -> list[ObligationView]:
        """Active, undisputed obligations strictly past due with something owed."""
        query = self._outstanding(kind).where(Obligation.due_date < today)
        return [
            view
            for view in (self._view(o, today) for o in self.session.execute(query).scalars())
            if view.status is ObligationStatus.OVERDUE
        ]

    def upcoming(
        self,
        today: date,
        days: int = 30,
        kind: ObligationKind | None = None,
    ) -> list[ObligationView]:
        """Outstanding obligations falling due within the next ``days`` days (today included)."""
        if days < 0:
            raise ValueError("days must not be negative")
        query = self._outstanding(kind).where(
            Obligation.due_date >= today,
            Obligation.due_date <= today + timedelta(days=days),
        )
        return [self._view(o, today) for o in self.session.execute(query).scalars()]

    def aging_report(
        self,
        today: date,
        kind: ObligationKind | None = None,
        buckets: tuple[AgeBucket, ...] = STANDARD_BUCKETS,
    ) -> AgingReport:
        rows = self.session.execute(self._outstanding(kind, include_disputed=True)).scalars()
        return build_aging_report(
            today,
            ((o.id, o.reference, o.counterparty, o.due_date, o.remaining_amount) for o in rows),
            buckets,
        )

    def _outstanding(self, kind: ObligationKind | None, include_disputed: bool = False):
        query = select(Obligation).where(
            Obligation.is_active.is_(True),
            Obligation.remaining_amount > 0,
        )
        if not include_disputed:
            query = query.where(Obligation.is_disputed.is_(False))
        if kind is not None:
            query = query.where(Obligation.kind == ObligationKind(kind).value)
        return query.order_by(Obligation.due_date, Obligation.reference)

    @staticmethod
    def _view(obligation: Obligation, today: date) -> ObligationView:
        remaining = obligation.remaining_amount
        overdue_days = days_overdue(obligation.due_date, today, remaining)
        status = classify_obligation(
            obligation.original_amount,
            obligation.paid_amount,
            obligation.due_date,
            today,
            disputed=obligation.is_disputed,
        )
        fee = late_fee(remaining, obligation.interest_rate, overdue_days)
        return ObligationView(
            obligation_id=obligation.id,
            reference=obligation.reference,
            kind=ObligationKind(obligation.kind),
            counterparty=obligation.counterparty,
            currency=obligation.currency,
            original_amount=obligation.original_amount,
            paid_amount=obligation.paid_amount,
            remaining_amount=remaining,
            issue_date=obligation.issue_date,
            due_date=obligation.due_date,
            status=status,
            days_overdue=overdue_days,
            late_fee=fee,
            is_active=obligation.is_active,
        )
