"""
Typed Exception Hierarchy for the Treasury Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger must be able to tell "your request was wrong" from
"the ledger itself is broken" without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        event_log.transfer(request, actor_id)
    except InsufficientFundsError as e:
        api_response(code=e.code, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TreasuryKernelError (base)
    |
    +-- ValidationError
    |   +-- DuplicateEquityAccountError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |   +-- InsufficientFundsError
    |   +-- OverpaymentError
    |
    +-- NotFoundError
    |   +-- AccountNotFoundError
    |   +-- EventNotFoundError
    |   +-- ObligationNotFoundError
    |   +-- AssetNotFoundError
    |
    +-- InactiveTargetError
    +-- AlreadyReversedError
    +-- AccountReferencedError
    +-- AssetDisposedError
    +-- ConcurrencyConflictError
    +-- ConsistencyError
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                    | When Raised                              | Recoverable
------------------------|------------------------------------------|------------
VALIDATION_ERROR        | Malformed or disallowed request          | yes
DUPLICATE_EQUITY        | Second active equity account             | yes
INVALID_CURRENCY        | Not a valid ISO 4217 code                | yes
CURRENCY_MISMATCH       | Transfer or amend across currencies      | yes
INSUFFICIENT_FUNDS      | Transfer exceeds source balance          | yes
OVERPAYMENT             | Payment larger than remaining amount     | yes
NOT_FOUND               | Referenced entity does not exist         | yes
INACTIVE_TARGET         | Posting against a deactivated entity     | yes
ALREADY_REVERSED        | Amending a reversed event                | yes
ACCOUNT_REFERENCED      | Deactivating an account with postings    | yes
ASSET_DISPOSED          | Changing an asset after disposal         | yes
CONCURRENCY_CONFLICT    | Lock timeout, deadlock, serialization    | yes (retry)
CONSISTENCY_ERROR       | Running total disagrees with the log     | NO (fatal)
IMMUTABILITY_VIOLATION  | Direct write to a guarded field          | NO (bug)

Reversing an already reversed event is NOT an error: it returns a
ReversalResult whose outcome is NO_EFFECT.

===============================================================================
"""


class TreasuryKernelError(Exception):
    """
    Base exception for all treasury kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TREASURY_KERNEL_ERROR"


# Validation


class ValidationError(TreasuryKernelError):
    """Request is malformed or violates a business rule."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class DuplicateEquityAccountError(ValidationError):
    """Only one active equity account may exist."""

    code: str = "DUPLICATE_EQUITY"

    def __init__(self, existing_account_id: str):
        self.existing_account_id = existing_account_id
        super().__init__(
            f"An active equity account already exists: {existing_account_id}",
            field="category",
        )


class InvalidCurrencyError(ValidationError):
    """Currency code is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency}", field="currency")


class CurrencyMismatchError(ValidationError):
    """Two entities in one operation are denominated differently."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Currency mismatch: expected {expected}, received {received}",
            field="currency",
        )


class InsufficientFundsError(ValidationError):
    """Outflow would take the source account below zero."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, available: str, requested: str):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds on account {account_id}: "
            f"available {available}, requested {requested}",
            field="amount",
        )


class OverpaymentError(ValidationError):
    """Payment exceeds the remaining amount of an obligation."""

    code: str = "OVERPAYMENT"

    def __init__(self, obligation_id: str, remaining: str, requested: str):
        self.obligation_id = obligation_id
        self.remaining = remaining
        self.requested = requested
        super().__init__(
            f"Payment of {requested} exceeds remaining {remaining} "
            f"on obligation {obligation_id}",
            field="amount",
        )


# Lookup


class NotFoundError(TreasuryKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Account", account_id)


class EventNotFoundError(NotFoundError):
    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__("LedgerEvent", event_id)


class ObligationNotFoundError(NotFoundError):
    def __init__(self, obligation_id: str):
        self.obligation_id = obligation_id
        super().__init__("Obligation", obligation_id)


class AssetNotFoundError(NotFoundError):
    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__("AmortizedAsset", asset_id)


# State


class InactiveTargetError(TreasuryKernelError):
    """Posting against an entity that has been deactivated."""

    code: str = "INACTIVE_TARGET"

    def __init__(self, target_type: str, target_id: str):
        self.target_type = target_type
        self.target_id = target_id
        super().__init__(f"{target_type} is inactive: {target_id}")


class AlreadyReversedError(TreasuryKernelError):
    """Event was reversed and can no longer be amended."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event already reversed: {event_id}")


class AccountReferencedError(TreasuryKernelError):
    """Account still has active postings and cannot be deactivated."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str, active_events: int):
        self.account_id = account_id
        self.active_events = active_events
        super().__init__(
            f"Account {account_id} is referenced by {active_events} active event(s)"
        )


class AssetDisposedError(TreasuryKernelError):
    """Asset has been disposed and is frozen."""

    code: str = "ASSET_DISPOSED"

    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"Asset already disposed: {asset_id}")


# Storage


class ConcurrencyConflictError(TreasuryKernelError):
    """
    Another transaction held a lock this operation needed (lock timeout,
    deadlock or serialization failure).  The savepoint was rolled back and
    nothing was persisted, so the caller may retry.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} conflicted with a concurrent transaction: {reason}")


# Fatal


class ConsistencyError(TreasuryKernelError):
    """
    A running total disagrees with its event log, or a multi-entity unit of
    work failed part-way and was rolled back.

    Never retried automatically.
    """

    code: str = "CONSISTENCY_ERROR"

    def __init__(self, message: str, entity_type: str | None = None, entity_id: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message)


class ImmutabilityViolationError(TreasuryKernelError):
    """Attempted a write the ledger forbids outside its own services."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
