"""
SequenceService -- monotonic sequence allocation.

Responsibility:
    Hands out the sequence that orders ledger events and the per-prefix,
    per-month numbers used in generated references (``REC-202403-0007``).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    EventLog and ObligationService.

Allocation strategies:
    - Event seq: a database sequence (``ledger_event_seq``) where the
      backend has one.  ``nextval`` takes no row lock, so postings on
      different entities never wait for each other.
    - References: a counter row per prefix and month, incremented in its
      own short transaction on a separate connection.  The row lock lasts
      for that transaction only, not for the caller's.
    - SQLite has no sequences and serializes every writer on the database
      file, so both fall back to a locked counter row in the caller's
      transaction.

Invariants enforced:
    - Strict monotonicity per named sequence.  MAX()+1 over the data tables
      is never used.
    - Uniqueness, not gaplessness: a value handed to a transaction that
      later rolls back is not reused.

Failure modes:
    - IntegrityError on a concurrent first use of a counter (handled by a
      savepoint rollback and re-read).
"""

from datetime import date

from sqlalchemy import BigInteger, Sequence, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from treasury_kernel.db.base import Base
from treasury_kernel.logging_config import get_logger

logger = get_logger("services.sequence")

LEDGER_EVENT_SEQUENCE = Sequence("ledger_event_seq", start=1, metadata=Base.metadata)


class SequenceCounter(Base):
    """One row per named sequence holding its last allocated value."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def _locked_counter(session: Session, sequence_name: str) -> SequenceCounter | None:
    return session.execute(
        select(SequenceCounter)
        .where(SequenceCounter.name == sequence_name)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _increment(session: Session, sequence_name: str) -> int:
    """Lock, increment and return the named counter (creating it on first use)."""
    counter = _locked_counter(session, sequence_name)

    if counter is None:
        savepoint = session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=1)
            session.add(counter)
            session.flush()
            savepoint.commit()
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": 1},
            )
            return 1
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = _locked_counter(session, sequence_name)
            if counter is None:
                raise

    counter.current_value += 1
    session.flush()
    logger.debug(
        "sequence_allocated",
        extra={"sequence_name": sequence_name, "value": counter.current_value},
    )
    return counter.current_value


class SequenceService:
    """
    Named sequences and reference numbering.

    Contract:
        ``next_value(name)`` returns an integer strictly greater than every
        value previously returned for ``name`` in committed transactions.
        ``next_event_seq()`` and ``next_reference()`` never hold a lock that
        outlives a single statement or a detached micro-transaction, except
        on SQLite.

    Non-goals:
        - Does NOT call ``session.commit()`` on the caller's session.
    """

    LEDGER_EVENT = "ledger_event"

    def __init__(self, session: Session):
        self._session = session

    @property
    def _dialect(self):
        return self._session.get_bind().dialect

    def next_value(self, sequence_name: str) -> int:
        """
        Next value of a counter row, allocated in the caller's transaction.

        Returns:
            The next sequence value (always > 0).
        """
        return _increment(self._session, sequence_name)

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never allocated."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def next_event_seq(self) -> int:
        """Ordering key of the next ledger event."""
        if self._dialect.supports_sequences:
            return self._session.scalar(select(LEDGER_EVENT_SEQUENCE.next_value()))
        return self.next_value(self.LEDGER_EVENT)

    def next_reference(self, prefix: str, on: date) -> str:
        """
        Allocate the next human-readable reference for ``prefix`` in the
        month of ``on``: ``{PREFIX}-{YYYYMM}-{NNNN}``.

        The numeric part restarts at 0001 each month and is zero-padded to
        four digits (wider once a month exceeds 9999 references).
        """
        period = f"{on.year:04d}{on.month:02d}"
        name = f"reference:{prefix}-{period}"
        if self._dialect.name == "sqlite":
            number = self.next_value(name)
        else:
            number = self._next_value_detached(name)
        return f"{prefix}-{period}-{number:04d}"

    def _next_value_detached(self, sequence_name: str) -> int:
        """Increment ``sequence_name`` in a transaction of its own and commit it."""
        engine = self._session.get_bind().engine
        with Session(bind=engine) as detached, detached.begin():
            return _increment(detached, sequence_name)
