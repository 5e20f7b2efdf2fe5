"""
Module: treasury_kernel.selectors.event_selector
Responsibility: Ordered, filterable views over the posting log, amendment
    history, and period statistics (count, total and average per kind,
    turnover).
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Listings are ordered by (event_date, seq), the same order the
      HistoricalReconstructor walks.
    - Statistics and turnover count active events only.
    - Turnover excludes transfer legs: moving money between two accounts is
      not revenue.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from treasury_kernel.db.types import round_money
from treasury_kernel.domain.postings import TargetRef
from treasury_kernel.domain.values import EventKind, GroupRole, TargetType
from treasury_kernel.exceptions import EventNotFoundError
from treasury_kernel.models.ledger_event import LedgerEvent, LedgerEventRevision
from treasury_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")

_TRANSFER_ROLES = (GroupRole.TRANSFER_OUT.value, GroupRole.TRANSFER_IN.value)


@dataclass(frozen=True)
class EventFilter:
    """
    Filter for ``EventSelector.list_events``.  ``None`` means "any".

    ``reversed`` selects by reversal state: False for active events only,
    True for reversed only.
    """

    target: TargetRef | None = None
    target_type: TargetType | None = None
    start: date | None = None
    end: date | None = None
    reversed: bool | None = None
    kind: EventKind | None = None
    group_id: UUID | None = None
    reference: str | None = None


@dataclass(frozen=True)
class EventView:
    event_id: UUID
    seq: int
    reference: str
    target: TargetRef
    kind: EventKind
    amount: Decimal
    signed_delta: Decimal
    event_date: date
    description: str | None
    category: str | None
    group_id: UUID | None
    group_role: GroupRole | None
    is_reversed: bool
    revision: int


@dataclass(frozen=True)
class KindStats:
    kind: EventKind
    count: int
    total: Decimal

    @property
    def average(self) -> Decimal:
        if self.count == 0:
            return _ZERO
        return round_money(self.total / self.count)


@dataclass(frozen=True)
class PeriodStats:
    start: date
    end: date
    inflows: KindStats
    outflows: KindStats

    @property
    def net(self) -> Decimal:
        return self.inflows.total - self.outflows.total


class EventSelector(BaseSelector):
    def get(self, event_id: UUID) -> LedgerEvent:
        event = self.session.get(LedgerEvent, event_id)
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    def view(self, event_id: UUID) -> EventView:
        return self._view(self.get(event_id))

    def list_events(self, criteria: EventFilter | None = None, limit: int | None = None) -> list[EventView]:
        criteria = criteria or EventFilter()
        query = select(LedgerEvent).where(*self._conditions(criteria))
        query = query.order_by(LedgerEvent.event_date, LedgerEvent.seq)
        if limit is not None:
            query = query.limit(limit)
        return [self._view(e) for e in self.session.execute(query).scalars()]

    def revisions(self, event_id: UUID) -> list[LedgerEventRevision]:
        """Prior versions of an event, oldest first."""
        self.get(event_id)
        return list(
            self.session.execute(
                select(LedgerEventRevision)
                .where(LedgerEventRevision.event_id == event_id)
                .order_by(LedgerEventRevision.revision)
            ).scalars()
        )

    def stats_by_period(
        self,
        start: date,
        end: date,
        target_type: TargetType = TargetType.ACCOUNT,
    ) -> PeriodStats:
        """Count, total and average of active postings per kind within [start, end]."""
        if end < start:
            raise ValueError("end must not precede start")
        rows = self.session.execute(
            select(
                LedgerEvent.kind,
                func.count(LedgerEvent.id),
                func.coalesce(func.sum(LedgerEvent.amount), 0),
            )
            .where(
                LedgerEvent.target_type == TargetType(target_type).value,
                LedgerEvent.is_reversed.is_(False),
                LedgerEvent.event_date >= start,
                LedgerEvent.event_date <= end,
            )
            .group_by(LedgerEvent.kind)
        ).all()
        by_kind = {EventKind(kind): (count, Decimal(total)) for kind, count, total in rows}

        def stats(kind: EventKind) -> KindStats:
            count, total = by_kind.get(kind, (0, _ZERO))
            return KindStats(kind=kind, count=count, total=total)

        return PeriodStats(
            start=start,
            end=end,
            inflows=stats(EventKind.INFLOW),
            outflows=stats(EventKind.OUTFLOW),
        )

    def turnover(self, start: date, end: date) -> Decimal:
        """Active account inflows within [start, end], transfers excluded."""
        if end < start:
            raise ValueError("end must not precede start")
        total = self.session.execute(
            select(func.coalesce(func.sum(LedgerEvent.amount), 0)).where(
                LedgerEvent.target_type == TargetType.ACCOUNT.value,
                LedgerEvent.kind == EventKind.INFLOW.value,
                LedgerEvent.is_reversed.is_(False),
                LedgerEvent.event_date >= start,
                LedgerEvent.event_date <= end,
                or_(
                    LedgerEvent.group_role.is_(None),
                    LedgerEvent.group_role.notin_(_TRANSFER_ROLES),
                ),
            )
        ).scalar_one()
        return Decimal(total)

    @staticmethod
    def _conditions(criteria: EventFilter) -> list:
        conditions = []
        if criteria.target is not None:
            conditions.append(LedgerEvent.target_type == criteria.target.target_type.value)
            conditions.append(LedgerEvent.target_id == criteria.target.target_id)
        elif criteria.target_type is not None:
            conditions.append(LedgerEvent.target_type == TargetType(criteria.target_type).value)
        if criteria.start is not None:
            conditions.append(LedgerEvent.event_date >= criteria.start)
        if criteria.end is not None:
            conditions.append(LedgerEvent.event_date <= criteria.end)
        if criteria.reversed is not None:
            conditions.append(LedgerEvent.is_reversed.is_(criteria.reversed))
        if criteria.kind is not None:
            conditions.append(LedgerEvent.kind == EventKind(criteria.kind).value)
        if criteria.group_id is not None:
            conditions.append(LedgerEvent.group_id == criteria.group_id)
        if criteria.reference is not None:
            conditions.append(LedgerEvent.reference == criteria.reference)
        return conditions

    @staticmethod
    def _view(event: LedgerEvent) -> EventView:
        return EventView(
            event_id=event.id,
            seq=event.seq,
            reference=event.reference,
            target=TargetRef(TargetType(event.target_type), event.target_id),
            kind=EventKind(event.kind),
            amount=event.amount,
            signed_delta=event.signed_delta,
            event_date=event.event_date,
            description=event.description,
            category=event.category,
            group_id=event.group_id,
            group_role=GroupRole(event.group_role) if event.group_role else None,
            is_reversed=event.is_reversed,
            revision=event.revision,
        )
