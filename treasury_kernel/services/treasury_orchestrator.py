"""
TreasuryOrchestrator -- composition root for one session.

Wires every ledger service and selector around a single Session, Clock and
LedgerSettings so they share the same BalanceLedger and SequenceService.
Callers (API handlers, scripts, tests) build one per request:

    with session_scope() as session:
        treasury = TreasuryOrchestrator(session, settings=settings)
        treasury.event_log.record(request, actor_id)

Does NOT commit; the surrounding scope owns the transaction.
"""

from uuid import uuid4

from sqlalchemy.orm import Session

from treasury_kernel.domain.clock import Clock, SystemClock
from treasury_kernel.domain.settings import LedgerSettings
from treasury_kernel.logging_config import LogContext, get_logger
from treasury_kernel.selectors.balance_selector import BalanceSelector
from treasury_kernel.selectors.event_selector import EventSelector
from treasury_kernel.selectors.history_selector import HistoricalReconstructor
from treasury_kernel.selectors.integrity_selector import IntegritySelector
from treasury_kernel.selectors.obligation_selector import ObligationSelector
from treasury_kernel.selectors.regime_selector import RegimeSelector
from treasury_kernel.services.account_service import AccountService
from treasury_kernel.services.asset_service import AssetService
from treasury_kernel.services.balance_ledger import BalanceLedger
from treasury_kernel.services.event_log import EventLog
from treasury_kernel.services.obligation_service import ObligationService
from treasury_kernel.services.sequence_service import SequenceService

logger = get_logger("services.treasury_orchestrator")


class TreasuryOrchestrator:
    def __init__(
        self,
        session: Session,
        settings: LedgerSettings | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self.settings = settings or LedgerSettings()
        self.clock = clock or SystemClock()

        # Write side
        self.sequences = SequenceService(session)
        self.ledger = BalanceLedger(session, self.clock)
        self.event_log = EventLog(session, self.clock, self.settings, self.ledger, self.sequences)
        self.accounts = AccountService(session, self.clock, self.settings)
        self.obligations = ObligationService(
            session, self.event_log, self.clock, self.settings, self.sequences
        )
        self.assets = AssetService(session, self.event_log, self.clock, self.settings)

        # Read side
        self.history = HistoricalReconstructor(session)
        self.balances = BalanceSelector(session)
        self.events = EventSelector(session)
        self.obligation_views = ObligationSelector(session)
        self.regime = RegimeSelector(session, self.settings.regime_thresholds)
        self.integrity = IntegritySelector(session)

    @classmethod
    def from_session(
        cls,
        session: Session,
        settings: LedgerSettings | None = None,
        clock: Clock | None = None,
    ) -> "TreasuryOrchestrator":
        orchestrator = cls(session, settings=settings, clock=clock)
        logger.debug(
            "treasury_orchestrator_created",
            extra={
                "default_currency": orchestrator.settings.default_currency,
                "allow_overdraft": orchestrator.settings.allow_overdraft,
            },
        )
        return orchestrator

    def correlated(self, correlation_id: str | None = None):
        """Bind a correlation id for every log record emitted inside the block."""
        return LogContext.bind(correlation_id=correlation_id or str(uuid4()))
