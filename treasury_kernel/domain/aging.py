"""
Aging -- bucket classification for outstanding payables and receivables.

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O.  ObligationSelector feeds
    it remaining amounts and due dates.

Invariants enforced:
    - Deterministic: identical inputs produce identical buckets.
    - Age is counted from the due date; not-yet-due items are "Current".
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID


@dataclass(frozen=True)
class AgeBucket:
    """
    A contiguous range of days past due.

    Guarantees:
        - min_days >= 0.
        - max_days >= min_days when bounded; None means unbounded.
    """

    name: str
    min_days: int
    max_days: int | None

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        if age_days < self.min_days:
            return False
        if self.max_days is None:
            return True
        return age_days <= self.max_days


STANDARD_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("Current", 0, 0),
    AgeBucket("1-30", 1, 30),
    AgeBucket("31-60", 31, 60),
    AgeBucket("61-90", 61, 90),
    AgeBucket("Over 90", 91, None),
)


def bucket_for(age_days: int, buckets: tuple[AgeBucket, ...] = STANDARD_BUCKETS) -> AgeBucket:
    """Bucket containing ``age_days``; negative ages (not yet due) fall in the first."""
    age = max(age_days, 0)
    for bucket in buckets:
        if bucket.contains(age):
            return bucket
    raise ValueError(f"No aging bucket covers {age_days} days")


@dataclass(frozen=True)
class AgedItem:
    obligation_id: UUID
    reference: str
    counterparty: str
    due_date: date
    remaining: Decimal
    age_days: int
    bucket: AgeBucket


@dataclass(frozen=True)
class AgingReport:
    as_of_date: date
    buckets: tuple[AgeBucket, ...]
    items: tuple[AgedItem, ...]

    def total_amount(self) -> Decimal:
        return sum((item.remaining for item in self.items), Decimal("0"))

    def total_by_bucket(self) -> dict[str, Decimal]:
        totals = {bucket.name: Decimal("0") for bucket in self.buckets}
        for item in self.items:
            totals[item.bucket.name] += item.remaining
        return totals


def build_aging_report(
    as_of: date,
    outstanding: Iterable[tuple[UUID, str, str, date, Decimal]],
    buckets: tuple[AgeBucket, ...] = STANDARD_BUCKETS,
) -> AgingReport:
    """
    Age ``(obligation_id, reference, counterparty, due_date, remaining)``
    tuples as of ``as_of``.  Settled rows (remaining <= 0) are skipped.
    """
    items = []
    for obligation_id, reference, counterparty, due_date, remaining in outstanding:
        if remaining <= 0:
            continue
        age = (as_of - due_date).days
        items.append(
            AgedItem(
                obligation_id=obligation_id,
                reference=reference,
                counterparty=counterparty,
                due_date=due_date,
                remaining=remaining,
                age_days=max(age, 0),
                bucket=bucket_for(age, buckets),
            )
        )
    return AgingReport(as_of_date=as_of, buckets=buckets, items=tuple(items))
