"""Services for the treasury kernel (write side)."""

from treasury_kernel.services.account_service import AccountService, ReconciliationResult
from treasury_kernel.services.asset_service import AssetAcquisition, AssetService, DisposalResult
from treasury_kernel.services.balance_ledger import Adjustment, BalanceLedger
from treasury_kernel.services.event_log import EventLog, ReversalResult, TransferResult
from treasury_kernel.services.obligation_service import ObligationService
from treasury_kernel.services.sequence_service import SequenceService
from treasury_kernel.services.treasury_orchestrator import TreasuryOrchestrator

__all__ = [
    "AccountService",
    "Adjustment",
    "AssetAcquisition",
    "AssetService",
    "BalanceLedger",
    "DisposalResult",
    "EventLog",
    "ObligationService",
    "ReconciliationResult",
    "ReversalResult",
    "SequenceService",
    "TransferResult",
    "TreasuryOrchestrator",
]
