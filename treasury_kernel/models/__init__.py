"""Domain models for the treasury kernel."""

from treasury_kernel.models.account import Account
from treasury_kernel.models.asset import AmortizedAsset
from treasury_kernel.models.ledger_event import LedgerEvent, LedgerEventRevision
from treasury_kernel.models.obligation import Obligation

__all__ = [
    "Account",
    "AmortizedAsset",
    "LedgerEvent",
    "LedgerEventRevision",
    "Obligation",
    "import_all_models",
]


def import_all_models() -> None:
    """Import every mapped class so Base.metadata knows all tables."""
    import treasury_kernel.services.sequence_service  # noqa: F401  SequenceCounter
