"""
ObligationService -- payables and receivables.

Responsibility:
    Opens obligations, records payments against them (optionally settled
    through a cash account in the same posting group), and toggles the
    dispute flag.  Paid-to-date moves only through EventLog postings.

Architecture position:
    Kernel > Services.  Delegates every financial movement to EventLog.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import positive_money, to_money, validate_currency
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.postings import PostingRequest, TargetRef
from treasury_kernel.domain.settings import LedgerSettings
from treasury_kernel.domain.values import EventKind, GroupRole, ObligationKind, TargetType
from treasury_kernel.exceptions import (
    AccountNotFoundError,
    CurrencyMismatchError,
    InactiveTargetError,
    ObligationNotFoundError,
    ValidationError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.account import Account
from treasury_kernel.models.ledger_event import LedgerEvent
from treasury_kernel.models.obligation import Obligation
from treasury_kernel.services.base import BaseService
from treasury_kernel.services.event_log import EventLog
from treasury_kernel.services.sequence_service import SequenceService

logger = get_logger("services.obligation")

_ZERO = Decimal("0")


class ObligationService(BaseService):
    def __init__(
        self,
        session: Session,
        event_log: EventLog,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session, clock)
        self.event_log = event_log
        self.settings = settings or LedgerSettings()
        self.sequences = sequences or SequenceService(session)

    def open_obligation(
        self,
        kind: ObligationKind | str,
        counterparty: str,
        amount: Decimal | int | str,
        issue_date: date,
        due_date: date,
        actor_id: UUID,
        currency: str | None = None,
        interest_rate: Decimal | int | str = Decimal("0"),
        description: str | None = None,
        reference: str | None = None,
    ) -> Obligation:
        """
        Register a payable or receivable.  The reference defaults to
        ``CR-YYYYMM-NNNN`` (receivable) or ``DT-YYYYMM-NNNN`` (payable)
        numbered in the month of issue.
        """
        try:
            kind = ObligationKind(kind)
        except ValueError as exc:
            raise ValidationError(f"unknown obligation kind {kind!r}", field="kind") from exc
        if not counterparty or not counterparty.strip():
            raise ValidationError("counterparty is required", field="counterparty")
        original = positive_money(amount)
        rate = to_money(interest_rate, "interest_rate")
        if rate < _ZERO:
            raise ValidationError("interest rate must not be negative", field="interest_rate")
        for name, value in (("issue_date", issue_date), ("due_date", due_date)):
            if not isinstance(value, date) or isinstance(value, datetime):
                raise ValidationError(f"{name} must be a date", field=name)
        if due_date < issue_date:
            raise ValidationError("due date precedes issue date", field="due_date")

        prefixes = self.settings.prefixes
        prefix = prefixes.receivable if kind is ObligationKind.RECEIVABLE else prefixes.payable
        obligation = Obligation(
            kind=kind.value,
            counterparty=counterparty.strip(),
            reference=reference or self.sequences.next_reference(prefix, issue_date),
            currency=validate_currency(currency or self.settings.default_currency),
            original_amount=original,
            paid_amount=_ZERO,
            remaining_amount=original,
            issue_date=issue_date,
            due_date=due_date,
            interest_rate=rate,
            description=description,
            is_disputed=False,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(obligation)
        self.session.flush()

        logger.info(
            "obligation_opened",
            extra={
                "obligation_id": str(obligation.id),
                "reference": obligation.reference,
                "kind": kind.value,
                "amount": original,
                "due_date": due_date,
            },
        )
        return obligation

    def get(self, obligation_id: UUID) -> Obligation:
        obligation = self.session.get(Obligation, obligation_id)
        if obligation is None:
            raise ObligationNotFoundError(str(obligation_id))
        return obligation

    def record_payment(
        self,
        obligation_id: UUID,
        amount: Decimal | int | str,
        payment_date: date,
        actor_id: UUID,
        settlement_account_id: UUID | None = None,
        description: str | None = None,
    ) -> list[LedgerEvent]:
        """
        Record a payment.  Without a settlement account this is a single
        posting on the obligation.  With one, the matching cash movement
        (inflow for a receivable, outflow for a payable) is posted in the
        same group so amending or reversing the payment keeps both sides
        in step.

        Raises:
            ObligationNotFoundError, InactiveTargetError, OverpaymentError,
            ValidationError, AccountNotFoundError, CurrencyMismatchError.
        """
        obligation = self.get(obligation_id)
        payment = PostingRequest(
            target=TargetRef.obligation(obligation.id),
            kind=EventKind.INFLOW,
            amount=amount,
            event_date=payment_date,
            description=description or f"Payment {obligation.reference}",
            category=ObligationKind(obligation.kind).value,
        )
        if settlement_account_id is None:
            return [self.event_log.record(payment, actor_id)]

        account = self.session.get(Account, settlement_account_id)
        if account is None:
            raise AccountNotFoundError(str(settlement_account_id))
        if account.currency != obligation.currency:
            raise CurrencyMismatchError(obligation.currency, account.currency)

        cash_kind = (
            EventKind.INFLOW
            if ObligationKind(obligation.kind) is ObligationKind.RECEIVABLE
            else EventKind.OUTFLOW
        )
        settlement = PostingRequest(
            target=TargetRef.account(account.id),
            kind=cash_kind,
            amount=amount,
            event_date=payment_date,
            description=payment.description,
            category=payment.category,
        )
        return self.event_log.record_group(
            [payment, settlement],
            actor_id,
            roles=[GroupRole.PAYMENT, GroupRole.SETTLEMENT],
            reference=obligation.reference,
        )

    def set_disputed(self, obligation_id: UUID, disputed: bool, actor_id: UUID) -> Obligation:
        obligation = self.get(obligation_id)
        obligation.is_disputed = disputed
        obligation.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "obligation_dispute_changed",
            extra={"obligation_id": str(obligation_id), "disputed": disputed},
        )
        return obligation

    def cancel(self, obligation_id: UUID, actor_id: UUID) -> Obligation:
        """
        Withdraw an obligation that has no active payments.  Further
        payments are then refused with InactiveTargetError.
        """
        obligation = self.session.execute(
            select(Obligation).where(Obligation.id == obligation_id).with_for_update()
        ).scalar_one_or_none()
        if obligation is None:
            raise ObligationNotFoundError(str(obligation_id))
        if not obligation.is_active:
            raise InactiveTargetError(TargetType.OBLIGATION.value, str(obligation_id))
        if obligation.paid_amount != _ZERO:
            raise ValidationError(
                "cannot cancel an obligation with active payments; reverse them first",
                field="paid_amount",
            )
        obligation.is_active = False
        obligation.updated_by_id = actor_id
        self.session.flush()
        logger.info("obligation_cancelled", extra={"obligation_id": str(obligation_id)})
        return obligation
