"""
Ledger Invariants Contract.

These invariants are structural law for the treasury kernel.  No
configuration value, settings flag or caller option can switch them off;
configuration only shapes *what* is posted (currency, reference prefixes,
thresholds, overdraft policy).

This module only declares them.  Enforcement lives in EventLog,
BalanceLedger, the ORM guards in db/immutability.py and the row locks
taken by the services; IntegritySelector verifies them after the fact.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable guarantees of the ledger engine."""

    RUNNING_TOTAL_EQUALS_LOG = "running_total_equals_log"
    """Every account balance equals its opening balance plus the signed
    deltas of its active postings; every obligation's paid-to-date equals
    the sum of its active payments.  Checked by IntegritySelector."""

    EXACTLY_ONCE = "exactly_once"
    """An active posting is applied once; a reversal backs it out once.
    Reversing again is NO_EFFECT.  Enforced by EventLog under row locks."""

    NO_DIRECT_TOTAL_WRITES = "no_direct_total_writes"
    """Running totals move only through BalanceLedger's atomic SQL
    increment.  Enforced by the ORM guards in db/immutability.py."""

    REVERSED_IS_FROZEN = "reversed_is_frozen"
    """Reversed postings and revision rows never change again.  Enforced by
    db/immutability.py."""

    ATOMIC_GROUPS = "atomic_groups"
    """All legs of a transfer or settled payment commit or roll back
    together.  Enforced by EventLog savepoints."""

    ORDERED_LOCKS = "ordered_locks"
    """Multi-entity operations lock rows in (target_type, id) order.
    Enforced by BalanceLedger.lock."""

    MONOTONIC_SEQUENCE = "monotonic_sequence"
    """Posting seq is unique, increases in allocation order and breaks
    same-date ties.  Enforced by SequenceService."""


# All invariants as a frozenset for programmatic checks.
ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = ("treasury_config",)
