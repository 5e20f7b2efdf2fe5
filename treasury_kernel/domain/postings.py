"""
Postings -- request DTOs accepted by the Event Log.

Architecture position:
    Kernel > Domain -- pure frozen dataclasses.  Field-level validation
    (positive Decimal amounts, required fields) happens in EventLog so that
    every rejection surfaces as a typed ValidationError with the offending
    field name.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from treasury_kernel.domain.values import EventKind, TargetType


@dataclass(frozen=True)
class TargetRef:
    """Identifies the entity whose running total a posting moves."""

    target_type: TargetType
    target_id: UUID

    def __post_init__(self) -> None:
        # Normalize so refs built from raw strings hash equal to enum-built ones
        object.__setattr__(self, "target_type", TargetType(self.target_type))
        if not isinstance(self.target_id, UUID):
            object.__setattr__(self, "target_id", UUID(str(self.target_id)))

    @classmethod
    def account(cls, account_id: UUID) -> "TargetRef":
        return cls(TargetType.ACCOUNT, account_id)

    @classmethod
    def obligation(cls, obligation_id: UUID) -> "TargetRef":
        return cls(TargetType.OBLIGATION, obligation_id)

    @property
    def lock_key(self) -> tuple[str, str]:
        """Global lock ordering key: entity kind first, then id."""
        return (self.target_type.value, str(self.target_id))


@dataclass(frozen=True)
class PostingRequest:
    """
    A single inflow or outflow against one target.

    ``amount`` must be positive; floats are rejected.  ``reference`` is
    generated when omitted.
    """

    target: TargetRef
    kind: EventKind
    amount: Decimal
    event_date: date
    description: str | None = None
    category: str | None = None
    reference: str | None = None


@dataclass(frozen=True)
class TransferRequest:
    """Move ``amount`` from one account to another as one unit."""

    from_account_id: UUID
    to_account_id: UUID
    amount: Decimal
    event_date: date
    description: str | None = None
    reference: str | None = None


@dataclass(frozen=True)
class EventAmendment:
    """
    Replacement values for an existing event.  Fields left as None keep
    their current value.
    """

    amount: Decimal | None = None
    kind: EventKind | None = None
    target: TargetRef | None = None
    event_date: date | None = None
    description: str | None = None
    category: str | None = None

    @property
    def changes_structure(self) -> bool:
        """True when the amendment moves the event to another target or direction."""
        return self.kind is not None or self.target is not None
