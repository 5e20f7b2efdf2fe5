"""
EventLog -- the append-only posting log and its exactly-once effects.

Responsibility:
    Records, amends and reverses dated postings against accounts and
    obligations, and applies each one's effect to the target's running
    total through the BalanceLedger in the same unit of work.  Transfers
    and settled payments are multi-leg groups committed as one unit.

Architecture position:
    Kernel > Services.  Sole caller of BalanceLedger.  Used directly by API
    code and by AccountService / AssetService / ObligationService.

Invariants enforced:
    - Exactly once: an active event's delta is in its target's total once;
      reversal backs it out once; reversing again is NO_EFFECT.
    - Amendment is reverse-effect(old) then apply-effect(new) under the
      locks of every entity involved, in one savepoint.
    - Rejections (ValidationError, NotFoundError, InactiveTargetError,
      AlreadyReversedError) happen before any mutation.
    - Event date never precedes the target's start date.

Failure modes:
    - ConcurrencyConflictError on a lock timeout, deadlock or serialization
      failure.  The savepoint is rolled back, the conflict is logged at
      WARNING and the caller may retry.
    - ConsistencyError when a unit fails part-way for any other storage
      reason.  The savepoint is rolled back, the failure is logged at
      CRITICAL, and the error surfaces to the caller.  Never retried.

Audit relevance:
    Each posting carries its creator; amendments write a
    LedgerEventRevision with the prior values; reversals record actor,
    time and reason.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from treasury_kernel.db.immutability import ledger_adjustment_scope
from treasury_kernel.db.types import positive_money
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.postings import EventAmendment, PostingRequest, TargetRef, TransferRequest
from treasury_kernel.domain.settings import LedgerSettings
from treasury_kernel.domain.values import EventKind, GroupRole, ObligationKind, Outcome, TargetType
from treasury_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyReversedError,
    ConcurrencyConflictError,
    ConsistencyError,
    CurrencyMismatchError,
    EventNotFoundError,
    InactiveTargetError,
    InsufficientFundsError,
    ObligationNotFoundError,
    OverpaymentError,
    TreasuryKernelError,
    ValidationError,
)
from treasury_kernel.logging_config import LogContext, get_logger
from treasury_kernel.models.account import Account
from treasury_kernel.models.ledger_event import LedgerEvent, LedgerEventRevision
from treasury_kernel.models.obligation import Obligation
from treasury_kernel.services.balance_ledger import Adjustment, BalanceLedger
from treasury_kernel.services.base import BaseService
from treasury_kernel.services.sequence_service import SequenceService

logger = get_logger("services.event_log")

_ZERO = Decimal("0")

# lock_not_available, deadlock_detected, serialization_failure
_CONFLICT_SQLSTATES = frozenset({"55P03", "40P01", "40001"})


def _is_lock_conflict(exc: SQLAlchemyError) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    sqlstate = getattr(exc.orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate in _CONFLICT_SQLSTATES
    # sqlite3 reports a busy database only in the message
    return "database is locked" in str(exc.orig)


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of ``EventLog.reverse``."""

    event_id: UUID
    outcome: Outcome
    reversed_event_ids: tuple[UUID, ...]
    reversed_at: datetime | None

    @property
    def is_no_effect(self) -> bool:
        return self.outcome is Outcome.NO_EFFECT


@dataclass(frozen=True)
class TransferResult:
    group_id: UUID
    reference: str
    outflow_event_id: UUID
    inflow_event_id: UUID
    from_balance: Decimal
    to_balance: Decimal


@dataclass(frozen=True)
class _Leg:
    target: TargetRef
    kind: EventKind
    amount: Decimal
    event_date: date
    description: str | None
    category: str | None
    role: GroupRole | None = None


class EventLog(BaseService):
    """
    Contract:
        Every public method runs inside one savepoint of the caller's
        transaction and leaves the running totals equal to their opening
        figure plus the deltas of all active events.

    Non-goals:
        - Does NOT commit.  Callers (or ``session_scope``) commit.
        - Does NOT classify; status is derived on read.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
        ledger: BalanceLedger | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings or LedgerSettings()
        self.ledger = ledger or BalanceLedger(session, self.clock)
        self.sequences = sequences or SequenceService(session)

    # ==================================================================
    # Record
    # ==================================================================

    def record(self, request: PostingRequest, actor_id: UUID) -> LedgerEvent:
        """
        Append one posting and apply its delta to the target.

        Raises:
            ValidationError: bad amount/kind/date, or a rule of the target
                (outflow on an obligation, overpayment, date before start).
            NotFoundError: unknown target.
            InactiveTargetError: target deactivated.
        """
        leg = self._leg_from_request(request)
        with LogContext.bind(actor_id=str(actor_id), target_id=str(leg.target.target_id)):
            with self._unit_of_work("posting", target_id=str(leg.target.target_id)):
                locked = self.ledger.lock([leg.target])
                entity = self._require_active(leg.target, locked[leg.target])
                self._check_leg_rules(entity, leg, pending=_ZERO)
                reference = request.reference or self._default_reference(leg, entity)
                (event,) = self._post_legs([leg], actor_id, reference, group_id=None)

            logger.info(
                "posting_recorded",
                extra={
                    "event_id": str(event.id),
                    "reference": event.reference,
                    "kind": leg.kind.value,
                    "amount": leg.amount,
                    "event_date": leg.event_date,
                },
            )
        return event

    def record_group(
        self,
        requests: Sequence[PostingRequest],
        actor_id: UUID,
        roles: Sequence[GroupRole] | None = None,
        reference: str | None = None,
    ) -> list[LedgerEvent]:
        """
        Append several postings that succeed or fail together and share a
        group_id.  Amending or reversing any leg later carries the whole
        group with it.
        """
        if len(requests) < 2:
            raise ValidationError("a posting group needs at least two legs", field="requests")
        if roles is not None and len(roles) != len(requests):
            raise ValidationError("roles must match requests one to one", field="roles")

        legs = [
            self._leg_from_request(req, role=(roles[i] if roles else None))
            for i, req in enumerate(requests)
        ]
        group_id = uuid4()
        with LogContext.bind(actor_id=str(actor_id)):
            with self._unit_of_work("posting_group", group_id=str(group_id)):
                locked = self.ledger.lock([leg.target for leg in legs])
                pending: dict[TargetRef, Decimal] = {}
                for leg in legs:
                    entity = self._require_active(leg.target, locked[leg.target])
                    self._check_leg_rules(entity, leg, pending=pending.get(leg.target, _ZERO))
                    pending[leg.target] = pending.get(leg.target, _ZERO) + leg.kind.signed(leg.amount)
                first = locked[legs[0].target]
                ref = reference or requests[0].reference or self._default_reference(legs[0], first)
                events = self._post_legs(legs, actor_id, ref, group_id=group_id)

            logger.info(
                "posting_group_recorded",
                extra={
                    "group_id": str(group_id),
                    "reference": ref,
                    "legs": len(events),
                },
            )
        return events

    def transfer(self, request: TransferRequest, actor_id: UUID) -> TransferResult:
        """
        Move funds between two accounts as an outflow + inflow pair.

        Raises:
            ValidationError: same account on both sides, bad amount.
            CurrencyMismatchError: accounts in different currencies.
            InsufficientFundsError: source balance below the amount and
                overdrafts are not allowed.
            NotFoundError / InactiveTargetError: as for ``record``.
            ConsistencyError: one leg could not be applied; nothing persisted.
        """
        amount = positive_money(request.amount)
        self._require_date(request.event_date)
        if request.from_account_id == request.to_account_id:
            raise ValidationError("cannot transfer to the same account", field="to_account_id")

        src = TargetRef.account(request.from_account_id)
        dst = TargetRef.account(request.to_account_id)
        group_id = uuid4()
        description = request.description or "Transfer"

        with LogContext.bind(actor_id=str(actor_id)):
            with self._unit_of_work(
                "transfer",
                group_id=str(group_id),
                from_account_id=str(src.target_id),
                to_account_id=str(dst.target_id),
            ):
                locked = self.ledger.lock([src, dst])
                source = self._require_active(src, locked[src])
                destination = self._require_active(dst, locked[dst])
                if source.currency != destination.currency:
                    raise CurrencyMismatchError(source.currency, destination.currency)
                if not self.settings.allow_overdraft and source.balance < amount:
                    raise InsufficientFundsError(str(source.id), str(source.balance), str(amount))

                legs = [
                    _Leg(src, EventKind.OUTFLOW, amount, request.event_date, description,
                         "transfer", GroupRole.TRANSFER_OUT),
                    _Leg(dst, EventKind.INFLOW, amount, request.event_date, description,
                         "transfer", GroupRole.TRANSFER_IN),
                ]
                for leg, entity in ((legs[0], source), (legs[1], destination)):
                    self._check_leg_rules(entity, leg, pending=_ZERO)

                reference = request.reference or self.sequences.next_reference(
                    self.settings.prefixes.transfer, request.event_date
                )
                outflow, inflow = self._post_legs(legs, actor_id, reference, group_id=group_id)

            logger.info(
                "transfer_recorded",
                extra={
                    "group_id": str(group_id),
                    "reference": reference,
                    "amount": amount,
                    "from_account_id": str(src.target_id),
                    "to_account_id": str(dst.target_id),
                },
            )

        return TransferResult(
            group_id=group_id,
            reference=reference,
            outflow_event_id=outflow.id,
            inflow_event_id=inflow.id,
            from_balance=source.balance,
            to_balance=destination.balance,
        )

    # ==================================================================
    # Amend
    # ==================================================================

    def amend(self, event_id: UUID, amendment: EventAmendment, actor_id: UUID) -> LedgerEvent:
        """
        Replace an active event's values, moving the running totals from the
        old effect to the new one in one step.

        Grouped events (transfers, settled payments) accept amount, date,
        description and category changes only; amount and date changes are
        carried to every leg so the group stays balanced.

        Raises:
            EventNotFoundError, AlreadyReversedError, ValidationError,
            NotFoundError / InactiveTargetError for a new target,
            CurrencyMismatchError when the new target has another currency,
            OverpaymentError, InsufficientFundsError, ConsistencyError.
        """
        with LogContext.bind(actor_id=str(actor_id), event_id=str(event_id)):
            with self._unit_of_work("amendment", event_id=str(event_id)):
                event = self._lock_event(event_id)
                if event.is_reversed:
                    raise AlreadyReversedError(str(event.id))

                legs = self._lock_group(event)
                if event.group_id is not None and amendment.changes_structure:
                    raise ValidationError(
                        "grouped events can only change amount, date, description or category",
                        field="target" if amendment.target is not None else "kind",
                    )

                new_amount = (
                    positive_money(amendment.amount) if amendment.amount is not None else event.amount
                )
                new_date = event.event_date
                if amendment.event_date is not None:
                    new_date = self._require_date(amendment.event_date)
                new_kind = self._coerce_kind(amendment.kind) if amendment.kind is not None else EventKind(event.kind)
                new_target = amendment.target or self._ref_of(event)

                plan = []
                for leg in legs:
                    is_subject = leg.id == event.id
                    plan.append(
                        (
                            leg,
                            new_target if is_subject else self._ref_of(leg),
                            new_kind if is_subject else EventKind(leg.kind),
                            new_amount,
                            new_date,
                        )
                    )

                if not self._plan_changes(plan) and not self._text_changes(event, amendment):
                    logger.info("event_amend_no_change", extra={"event_id": str(event.id)})
                    return event

                refs = {self._ref_of(leg) for leg in legs} | {p[1] for p in plan}
                locked = self.ledger.lock(refs)

                adjustments: list[Adjustment] = []
                pending: dict[TargetRef, Decimal] = {}
                for leg, ref, kind, amount, _ in plan:
                    old_ref = self._ref_of(leg)
                    adjustments.append(Adjustment(old_ref, -leg.signed_delta))
                    adjustments.append(Adjustment(ref, kind.signed(amount)))
                    pending[old_ref] = pending.get(old_ref, _ZERO) - leg.signed_delta

                for leg, ref, kind, amount, when in plan:
                    entity = locked[ref]
                    if ref != self._ref_of(leg):
                        entity = self._require_active(ref, entity)
                        previous = locked[self._ref_of(leg)]
                        if previous is not None and previous.currency != entity.currency:
                            raise CurrencyMismatchError(previous.currency, entity.currency)
                    elif entity is None:
                        raise self._missing(ref)
                    new_leg = _Leg(ref, kind, amount, when, None, None, leg.group_role)
                    self._check_leg_rules(entity, new_leg, pending=pending.get(ref, _ZERO))
                    pending[ref] = pending.get(ref, _ZERO) + kind.signed(amount)
                    if (
                        leg.group_role == GroupRole.TRANSFER_OUT
                        and not self.settings.allow_overdraft
                        and amount > leg.amount
                        and entity.balance + pending[ref] < _ZERO
                    ):
                        raise InsufficientFundsError(
                            str(entity.id), str(entity.balance + leg.amount), str(amount)
                        )

                now = self.clock.now()
                with ledger_adjustment_scope(self.session):
                    for leg, ref, kind, amount, when in plan:
                        self._write_revision(leg, actor_id, now)
                        leg.target_type = ref.target_type.value
                        leg.target_id = ref.target_id
                        leg.kind = kind.value
                        leg.amount = amount
                        leg.event_date = when
                        leg.revision = leg.revision + 1
                        leg.amended_at = now
                        leg.amended_by_id = actor_id
                        leg.updated_by_id = actor_id
                    if amendment.description is not None:
                        event.description = amendment.description
                    if amendment.category is not None:
                        event.category = amendment.category
                    self.ledger.apply_all(adjustments, now)

            logger.info(
                "event_amended",
                extra={
                    "event_id": str(event.id),
                    "revision": event.revision,
                    "amount": event.amount,
                    "legs": len(legs),
                },
            )
        return event

    # ==================================================================
    # Reverse
    # ==================================================================

    def reverse(self, event_id: UUID, actor_id: UUID, reason: str | None = None) -> ReversalResult:
        """
        Back out an event (and every leg of its group) exactly once.

        Reversing an event that is already reversed is not an error: the
        result carries ``Outcome.NO_EFFECT`` and nothing changes.

        Raises:
            EventNotFoundError: unknown event.
            ConsistencyError: a leg could not be backed out; nothing persisted.
        """
        with LogContext.bind(actor_id=str(actor_id), event_id=str(event_id)):
            with self._unit_of_work("reversal", event_id=str(event_id)):
                event = self._lock_event(event_id)
                if event.is_reversed:
                    logger.info(
                        "event_reversal_no_effect",
                        extra={"event_id": str(event.id), "reversed_at": event.reversed_at},
                    )
                    return ReversalResult(
                        event_id=event.id,
                        outcome=Outcome.NO_EFFECT,
                        reversed_event_ids=(),
                        reversed_at=event.reversed_at,
                    )

                legs = self._lock_group(event)
                now = self.clock.now()
                with ledger_adjustment_scope(self.session):
                    for leg in legs:
                        leg.is_reversed = True
                        leg.reversed_at = now
                        leg.reversed_by_id = actor_id
                        leg.reversal_reason = reason
                        leg.updated_by_id = actor_id
                    self.ledger.apply_all(
                        [Adjustment(self._ref_of(leg), -leg.signed_delta) for leg in legs],
                        now,
                    )

            logger.info(
                "event_reversed",
                extra={
                    "event_id": str(event.id),
                    "reference": event.reference,
                    "legs": len(legs),
                    "reason": reason,
                },
            )
        return ReversalResult(
            event_id=event.id,
            outcome=Outcome.APPLIED,
            reversed_event_ids=tuple(leg.id for leg in legs),
            reversed_at=now,
        )

    # ==================================================================
    # Internals
    # ==================================================================

    @contextmanager
    def _unit_of_work(self, operation: str, **context) -> Iterator[None]:
        """
        Savepoint around one logical operation.  Expected rejections pass
        through untouched, lock conflicts become retryable errors and
        anything else is a consistency failure.
        """
        try:
            with self.session.begin_nested():
                yield
        except ConsistencyError:
            logger.critical(f"{operation}_rolled_back", extra=context, exc_info=True)
            raise
        except TreasuryKernelError:
            raise
        except SQLAlchemyError as exc:
            if _is_lock_conflict(exc):
                logger.warning(
                    f"{operation}_conflict", extra={**context, "reason": str(exc.orig)}
                )
                raise ConcurrencyConflictError(operation, str(exc.orig)) from exc
            logger.critical(f"{operation}_rolled_back", extra=context, exc_info=True)
            raise ConsistencyError(
                f"{operation} failed part-way and was rolled back: {exc}"
            ) from exc

    def _post_legs(
        self,
        legs: Sequence[_Leg],
        actor_id: UUID,
        reference: str,
        group_id: UUID | None,
    ) -> list[LedgerEvent]:
        events = []
        for leg in legs:
            event = LedgerEvent(
                seq=self.sequences.next_event_seq(),
                reference=reference,
                target_type=leg.target.target_type.value,
                target_id=leg.target.target_id,
                kind=leg.kind.value,
                amount=leg.amount,
                event_date=leg.event_date,
                description=leg.description,
                category=leg.category,
                group_id=group_id,
                group_role=leg.role.value if leg.role else None,
                is_reversed=False,
                revision=0,
                created_by_id=actor_id,
            )
            self.session.add(event)
            events.append(event)
        self.session.flush()
        self.ledger.apply_all(
            [Adjustment(leg.target, leg.kind.signed(leg.amount)) for leg in legs],
        )
        return events

    def _leg_from_request(self, request: PostingRequest, role: GroupRole | None = None) -> _Leg:
        if request.target is None:
            raise ValidationError("target is required", field="target")
        return _Leg(
            target=request.target,
            kind=self._coerce_kind(request.kind),
            amount=positive_money(request.amount),
            event_date=self._require_date(request.event_date),
            description=request.description,
            category=request.category,
            role=role,
        )

    @staticmethod
    def _coerce_kind(kind) -> EventKind:
        try:
            return EventKind(kind)
        except ValueError as exc:
            raise ValidationError(f"kind must be inflow or outflow, got {kind!r}", field="kind") from exc

    @staticmethod
    def _require_date(value) -> date:
        if not isinstance(value, date) or isinstance(value, datetime):
            raise ValidationError("event_date must be a date", field="event_date")
        return value

    @staticmethod
    def _ref_of(event: LedgerEvent) -> TargetRef:
        return TargetRef(TargetType(event.target_type), event.target_id)

    @staticmethod
    def _missing(ref: TargetRef) -> TreasuryKernelError:
        if ref.target_type is TargetType.ACCOUNT:
            return AccountNotFoundError(str(ref.target_id))
        return ObligationNotFoundError(str(ref.target_id))

    def _require_active(self, ref: TargetRef, entity: Account | Obligation | None) -> Account | Obligation:
        if entity is None:
            raise self._missing(ref)
        if not entity.is_active:
            raise InactiveTargetError(ref.target_type.value, str(ref.target_id))
        return entity

    def _check_leg_rules(self, entity: Account | Obligation, leg: _Leg, pending: Decimal) -> None:
        """
        Target-specific rules for one leg.  ``pending`` is the net delta
        already planned against the same entity in this unit of work.
        """
        if leg.event_date < entity.start_date:
            raise ValidationError(
                f"event date {leg.event_date} precedes the start date {entity.start_date} "
                f"of {leg.target.target_type.value} {entity.id}",
                field="event_date",
            )
        if isinstance(entity, Obligation):
            if leg.kind is not EventKind.INFLOW:
                raise ValidationError(
                    "payments against an obligation must be inflows", field="kind"
                )
            remaining = entity.remaining_amount - pending
            if leg.amount > remaining:
                raise OverpaymentError(str(entity.id), str(remaining), str(leg.amount))

    def _default_reference(self, leg: _Leg, entity: Account | Obligation | None) -> str:
        if isinstance(entity, Obligation):
            return entity.reference
        prefixes = self.settings.prefixes
        prefix = prefixes.inflow if leg.kind is EventKind.INFLOW else prefixes.outflow
        return self.sequences.next_reference(prefix, leg.event_date)

    def _lock_event(self, event_id: UUID) -> LedgerEvent:
        event = self.session.execute(
            select(LedgerEvent)
            .where(LedgerEvent.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    def _lock_group(self, event: LedgerEvent) -> list[LedgerEvent]:
        if event.group_id is None:
            return [event]
        return list(
            self.session.execute(
                select(LedgerEvent)
                .where(LedgerEvent.group_id == event.group_id)
                .order_by(LedgerEvent.seq)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _plan_changes(self, plan) -> bool:
        for leg, ref, kind, amount, when in plan:
            if (
                ref != self._ref_of(leg)
                or kind != EventKind(leg.kind)
                or amount != leg.amount
                or when != leg.event_date
            ):
                return True
        return False

    @staticmethod
    def _text_changes(event: LedgerEvent, amendment: EventAmendment) -> bool:
        return (
            (amendment.description is not None and amendment.description != event.description)
            or (amendment.category is not None and amendment.category != event.category)
        )

    def _write_revision(self, leg: LedgerEvent, actor_id: UUID, now: datetime) -> None:
        self.session.add(
            LedgerEventRevision(
                event_id=leg.id,
                revision=leg.revision + 1,
                previous_target_type=TargetType(leg.target_type).value,
                previous_target_id=leg.target_id,
                previous_kind=EventKind(leg.kind).value,
                previous_amount=leg.amount,
                previous_event_date=leg.event_date,
                previous_description=leg.description,
                previous_category=leg.category,
                amended_at=now,
                created_by_id=actor_id,
            )
        )
