"""
BalanceLedger -- per-entity running totals with atomic, serialized updates.

Responsibility:
    Holds the only code path that changes an account balance or an
    obligation's paid-to-date.  Each adjustment is a single SQL statement
    (``SET total = total + :delta``) issued while the entity's row lock is
    held, so concurrent postings against one entity never lose an update
    and postings against different entities never wait on each other.

Architecture position:
    Kernel > Services.  Called by EventLog only; never by API code.

Invariants enforced:
    - Serialization: ``SELECT ... FOR UPDATE`` on every touched row before
      any increment, acquired in one global order (target type, then id)
      so two multi-entity operations cannot deadlock.
    - Atomic increment: no Python read-modify-write of a total.
    - Bounds: 0 <= paid_amount <= original_amount on obligations, checked
      in Decimal under the lock before the increment is issued.

Failure modes:
    - ConsistencyError when a locked target has vanished, when an update
      touches no row, or when an adjustment would break the bounds above.
      Logged at CRITICAL and never retried.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.postings import TargetRef
from treasury_kernel.domain.values import TargetType
from treasury_kernel.exceptions import ConsistencyError
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.account import Account
from treasury_kernel.models.obligation import Obligation
from treasury_kernel.services.base import BaseService

logger = get_logger("services.balance_ledger")

_ZERO = Decimal("0")

LedgerTarget = Account | Obligation


@dataclass(frozen=True)
class Adjustment:
    """A signed delta to apply to one entity's running total."""

    target: TargetRef
    delta: Decimal


def _model_for(target_type: TargetType):
    if TargetType(target_type) is TargetType.ACCOUNT:
        return Account
    return Obligation


class BalanceLedger(BaseService):
    """
    Contract:
        ``lock()`` then ``apply()`` / ``apply_all()`` within the caller's
        transaction.  Row locks are released when that transaction ends.

    Non-goals:
        - Does not validate business rules (active targets, funds,
          overpayment).  EventLog rejects those before calling in.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock(self, refs: Iterable[TargetRef]) -> dict[TargetRef, LedgerTarget | None]:
        """
        Lock every referenced row in global order and return fresh copies.

        Missing entities map to None so callers can raise the appropriate
        NotFoundError before anything is mutated.
        """
        ordered = sorted({ref for ref in refs}, key=lambda r: r.lock_key)
        locked: dict[TargetRef, LedgerTarget | None] = OrderedDict()
        for ref in ordered:
            model = _model_for(ref.target_type)
            locked[ref] = self.session.execute(
                select(model)
                .where(model.id == ref.target_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if ordered:
            logger.debug(
                "ledger_rows_locked",
                extra={"targets": [f"{k[0]}:{k[1]}" for k in (r.lock_key for r in ordered)]},
            )
        return locked

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def apply(self, ref: TargetRef, delta: Decimal, moved_at: datetime | None = None) -> LedgerTarget:
        """Lock ``ref`` and add ``delta`` to its running total."""
        return self.apply_all([Adjustment(ref, delta)], moved_at)[ref]

    def apply_all(
        self,
        adjustments: Iterable[Adjustment],
        moved_at: datetime | None = None,
    ) -> dict[TargetRef, LedgerTarget]:
        """
        Apply several deltas as one step.  Deltas for the same entity are
        netted first; every row is locked (in global order) before the
        first increment is issued.
        """
        net: dict[TargetRef, Decimal] = {}
        for adj in adjustments:
            net[adj.target] = net.get(adj.target, _ZERO) + adj.delta

        moved_at = moved_at or self.clock.now()
        locked = self.lock(net.keys())

        for ref, entity in locked.items():
            if entity is None:
                raise self._fatal(
                    "ledger_target_missing",
                    f"{ref.target_type} {ref.target_id} vanished during adjustment",
                    ref,
                )
            if isinstance(entity, Obligation):
                self._check_obligation_bounds(entity, net[ref], ref)

        result: dict[TargetRef, LedgerTarget] = {}
        for ref, entity in locked.items():
            delta = net[ref]
            if delta != _ZERO:
                self._increment(ref, delta, moved_at)
                self.session.refresh(entity)
            result[ref] = entity
            logger.info(
                "ledger_adjusted",
                extra={
                    "target_type": TargetType(ref.target_type).value,
                    "target_id": str(ref.target_id),
                    "delta": delta,
                    "total": self.total_of(entity),
                },
            )
        return result

    def _increment(self, ref: TargetRef, delta: Decimal, moved_at: datetime) -> None:
        if TargetType(ref.target_type) is TargetType.ACCOUNT:
            stmt = (
                update(Account)
                .where(Account.id == ref.target_id)
                .values(balance=Account.balance + delta, last_movement_at=moved_at)
            )
        else:
            stmt = (
                update(Obligation)
                .where(Obligation.id == ref.target_id)
                .values(
                    paid_amount=Obligation.paid_amount + delta,
                    remaining_amount=Obligation.remaining_amount - delta,
                    last_payment_at=moved_at,
                )
            )
        outcome = self.session.execute(stmt.execution_options(synchronize_session=False))
        if outcome.rowcount != 1:
            raise self._fatal(
                "ledger_increment_missed",
                f"Increment on {ref.target_type} {ref.target_id} touched {outcome.rowcount} rows",
                ref,
            )

    def _check_obligation_bounds(self, obligation: Obligation, delta: Decimal, ref: TargetRef) -> None:
        new_paid = obligation.paid_amount + delta
        if new_paid < _ZERO or new_paid > obligation.original_amount:
            raise self._fatal(
                "ledger_bounds_violated",
                f"Obligation {obligation.id} paid-to-date would become {new_paid} "
                f"(original {obligation.original_amount})",
                ref,
            )

    def _fatal(self, event_name: str, message: str, ref: TargetRef) -> ConsistencyError:
        error = ConsistencyError(
            message,
            entity_type=TargetType(ref.target_type).value,
            entity_id=str(ref.target_id),
        )
        logger.critical(
            event_name,
            extra={
                "target_type": TargetType(ref.target_type).value,
                "target_id": str(ref.target_id),
            },
        )
        return error

    @staticmethod
    def total_of(entity: LedgerTarget) -> Decimal:
        """The running total a posting against ``entity`` moves."""
        if isinstance(entity, Account):
            return entity.balance
        return entity.paid_amount
