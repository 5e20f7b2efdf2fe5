"""
ORM-level write guards for the ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

Running totals are only trustworthy if the one code path allowed to move
them is the Balance Ledger, and if a posting's financial fields only change
together with the totals they feed.  These SQLAlchemy listeners reject every
other route before any SQL reaches the database:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule
---------------------|------------------------------------------------------
Account              | balance never written through the ORM; currency,
                     | opening balance and opening date fixed; never deleted
Obligation           | paid/remaining never written through the ORM; original
                     | amount and currency fixed; never deleted
LedgerEvent          | reversed events frozen; financial fields change only
                     | inside ledger_adjustment_scope(); never deleted
LedgerEventRevision  | always immutable
AmortizedAsset       | accumulated depreciation never decreases; frozen once
                     | disposed

updated_at / updated_by_id are audit metadata and may always change.

Running totals move through ``UPDATE ... SET total = total + :delta``
statements issued by BalanceLedger.  Those are Core statements, not ORM
attribute writes, so these listeners do not see them; anything that does
reach them through attribute history is an unsanctioned write.

===============================================================================
USAGE
===============================================================================

    from treasury_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    unregister_immutability_listeners()  # tests only
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from treasury_kernel.exceptions import ImmutabilityViolationError
from treasury_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

_ADJUSTMENT_KEY = "treasury_ledger_adjustment_depth"

ACCOUNT_FROZEN_FIELDS = ("balance", "currency", "opening_balance", "opening_date")
OBLIGATION_FROZEN_FIELDS = ("paid_amount", "remaining_amount", "original_amount", "currency")
EVENT_FINANCIAL_FIELDS = ("amount", "kind", "target_type", "target_id", "event_date", "is_reversed")


@contextmanager
def ledger_adjustment_scope(session: Session) -> Iterator[None]:
    """
    Permit changes to posting financial fields for the duration of the block.

    Only EventLog enters this scope, and only around code that also moves
    the affected running totals.  Pending changes are flushed before the
    scope closes so the guard evaluates them while the permission holds.
    """
    session.info[_ADJUSTMENT_KEY] = session.info.get(_ADJUSTMENT_KEY, 0) + 1
    try:
        yield
        session.flush()
    finally:
        session.info[_ADJUSTMENT_KEY] -= 1


def _in_adjustment_scope(target) -> bool:
    session = object_session(target)
    return session is not None and session.info.get(_ADJUSTMENT_KEY, 0) > 0


def _blocked(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed(target, field: str) -> bool:
    return get_history(target, field).has_changes()


def _was_true(target, field: str) -> bool:
    """Value of a boolean column as it was loaded, before pending changes."""
    hist = get_history(target, field)
    if hist.deleted:
        return bool(hist.deleted[0])
    if hist.unchanged:
        return bool(hist.unchanged[0])
    return False


# =============================================================================
# Account / Obligation running totals
# =============================================================================


def _check_account_update(mapper, connection, target):
    for field in ACCOUNT_FROZEN_FIELDS:
        if _changed(target, field):
            raise _blocked(
                "Account", target, "UPDATE",
                f"Field '{field}' is maintained by the ledger and cannot be assigned",
                field,
            )


def _check_obligation_update(mapper, connection, target):
    for field in OBLIGATION_FROZEN_FIELDS:
        if _changed(target, field):
            raise _blocked(
                "Obligation", target, "UPDATE",
                f"Field '{field}' is maintained by the ledger and cannot be assigned",
                field,
            )


def _check_account_delete(mapper, connection, target):
    raise _blocked("Account", target, "DELETE", "Accounts are deactivated, never deleted")


def _check_obligation_delete(mapper, connection, target):
    raise _blocked("Obligation", target, "DELETE", "Obligations are cancelled, never deleted")


# =============================================================================
# Ledger events
# =============================================================================


def _check_ledger_event_update(mapper, connection, target):
    """
    Reversed events are frozen outright.  On live events the financial
    fields (including the reversal flag itself) may only change inside
    ledger_adjustment_scope().
    """
    if _was_true(target, "is_reversed"):
        for attr in inspect(target).attrs:
            if attr.key in _AUDIT_FIELDS:
                continue
            if attr.history.has_changes():
                raise _blocked(
                    "LedgerEvent", target, "UPDATE",
                    f"Cannot modify field '{attr.key}' on a reversed event",
                    attr.key,
                )
        return

    if _in_adjustment_scope(target):
        return

    for field in EVENT_FINANCIAL_FIELDS:
        if _changed(target, field):
            raise _blocked(
                "LedgerEvent", target, "UPDATE",
                f"Field '{field}' can only change through amend or reverse",
                field,
            )


def _check_ledger_event_delete(mapper, connection, target):
    raise _blocked("LedgerEvent", target, "DELETE", "Ledger events cannot be deleted")


def _check_revision_update(mapper, connection, target):
    raise _blocked("LedgerEventRevision", target, "UPDATE", "Event revisions are immutable")


def _check_revision_delete(mapper, connection, target):
    raise _blocked("LedgerEventRevision", target, "DELETE", "Event revisions cannot be deleted")


# =============================================================================
# Amortized assets
# =============================================================================


def _check_asset_update(mapper, connection, target):
    from treasury_kernel.domain.values import AssetStatus

    status_hist = get_history(target, "status")
    previous_status = (status_hist.deleted or status_hist.unchanged or [None])[0]
    if previous_status == AssetStatus.DISPOSED:
        for attr in inspect(target).attrs:
            if attr.key in _AUDIT_FIELDS:
                continue
            if attr.history.has_changes():
                raise _blocked(
                    "AmortizedAsset", target, "UPDATE",
                    f"Cannot modify field '{attr.key}' on a disposed asset",
                    attr.key,
                )
        return

    hist = get_history(target, "accumulated_depreciation")
    if hist.deleted and hist.added and hist.added[0] < hist.deleted[0]:
        raise _blocked(
            "AmortizedAsset", target, "UPDATE",
            "Accumulated depreciation cannot decrease",
            "accumulated_depreciation",
        )


def register_immutability_listeners():
    """
    Register all write-guard listeners.

    Call after models are imported and before any database operations.
    """
    from treasury_kernel.models.account import Account
    from treasury_kernel.models.asset import AmortizedAsset
    from treasury_kernel.models.ledger_event import LedgerEvent, LedgerEventRevision
    from treasury_kernel.models.obligation import Obligation

    for target, name, fn in _listeners(Account, Obligation, LedgerEvent, LedgerEventRevision, AmortizedAsset):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _listeners(Account, Obligation, LedgerEvent, LedgerEventRevision, AmortizedAsset):
    return (
        (Account, "before_update", _check_account_update),
        (Account, "before_delete", _check_account_delete),
        (Obligation, "before_update", _check_obligation_update),
        (Obligation, "before_delete", _check_obligation_delete),
        (LedgerEvent, "before_update", _check_ledger_event_update),
        (LedgerEvent, "before_delete", _check_ledger_event_delete),
        (LedgerEventRevision, "before_update", _check_revision_update),
        (LedgerEventRevision, "before_delete", _check_revision_delete),
        (AmortizedAsset, "before_update", _check_asset_update),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the write-guard listeners.

    WARNING: tests only, to set up deliberately corrupt state.
    """
    from treasury_kernel.models.account import Account
    from treasury_kernel.models.asset import AmortizedAsset
    from treasury_kernel.models.ledger_event import LedgerEvent, LedgerEventRevision
    from treasury_kernel.models.obligation import Obligation

    for target, name, fn in _listeners(Account, Obligation, LedgerEvent, LedgerEventRevision, AmortizedAsset):
        _safe_remove_listener(target, name, fn)
