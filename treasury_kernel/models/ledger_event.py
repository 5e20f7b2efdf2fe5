"""
Module: treasury_kernel.models.ledger_event
Responsibility: ORM persistence for the append-only posting log and its
    amendment history.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

Invariants enforced:
    - A non-reversed LedgerEvent has been applied exactly once to the
      running total of its target; a reversed one contributes nothing.
    - Reversed events are frozen (db/immutability.py).
    - Financial fields (amount, kind, target_type, target_id, event_date)
      change only inside EventLog's adjustment scope, which moves the
      running totals in the same unit of work.
    - seq is unique, increases in allocation order and breaks ties between
      events sharing an event_date.
    - LedgerEventRevision rows are append-only.

Audit relevance:
    Every amendment leaves a revision row with the prior values, the actor
    and the time.  Reversal records actor, time and reason on the event.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from treasury_kernel.db.base import TrackedBase, UUIDString
from treasury_kernel.domain.values import EventKind, GroupRole, TargetType


class LedgerEvent(TrackedBase):
    """
    A dated financial posting against one account or obligation.

    Contract:
        ``event_date`` is the business date used for point-in-time queries.
        ``created_at`` is when the row was committed and is never used for
        historical reconstruction.
    """

    __tablename__ = "ledger_events"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_event_amount_positive"),
        Index("idx_ledger_event_target", "target_type", "target_id", "event_date"),
        Index("idx_ledger_event_reference", "reference"),
        Index("idx_ledger_event_group", "group_id"),
        Index("idx_ledger_event_seq", "seq", unique=True),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reference: Mapped[str] = mapped_column(String(50), nullable=False)

    target_type: Mapped[TargetType] = mapped_column(String(20), nullable=False)

    target_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    kind: Mapped[EventKind] = mapped_column(String(10), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    event_date: Mapped[date] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Legs of a transfer or of a settled payment share a group_id
    group_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    group_role: Mapped[GroupRole | None] = mapped_column(String(20), nullable=True)

    is_reversed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reversal_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    revision: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    amended_at: Mapped[datetime | None] = mapped_column(nullable=True)

    amended_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    revisions: Mapped[list["LedgerEventRevision"]] = relationship(
        back_populates="event",
        order_by="LedgerEventRevision.revision",
    )

    def __repr__(self) -> str:
        return f"<LedgerEvent {self.reference} {self.kind} {self.amount} on {self.event_date}>"

    @property
    def signed_delta(self) -> Decimal:
        """Contribution of this event to its target's running total."""
        return EventKind(self.kind).signed(self.amount)


class LedgerEventRevision(TrackedBase):
    """Snapshot of an event's financial fields before an amendment."""

    __tablename__ = "ledger_event_revisions"

    __table_args__ = (
        Index("idx_event_revision_event", "event_id", "revision", unique=True),
    )

    event_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_events.id"),
        nullable=False,
    )

    # Revision number the event moved TO; the row holds the values it moved FROM
    revision: Mapped[int] = mapped_column(Integer, nullable=False)

    previous_target_type: Mapped[TargetType] = mapped_column(String(20), nullable=False)

    previous_target_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    previous_kind: Mapped[EventKind] = mapped_column(String(10), nullable=False)

    previous_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    previous_event_date: Mapped[date] = mapped_column(nullable=False)

    previous_description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    previous_category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    amended_at: Mapped[datetime] = mapped_column(nullable=False)

    event: Mapped[LedgerEvent] = relationship(back_populates="revisions")
