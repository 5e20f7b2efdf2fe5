"""Tests for TreasuryOrchestrator wiring and log correlation."""

from datetime import date

from treasury_kernel.domain.postings import TargetRef
from treasury_kernel.domain.settings import LedgerSettings
from treasury_kernel.domain.values import EventKind
from treasury_kernel.logging_config import LogContext
from treasury_kernel.services.treasury_orchestrator import TreasuryOrchestrator


class TestWiring:
    def test_services_share_ledger_and_sequences(self, treasury):
        assert treasury.event_log.ledger is treasury.ledger
        assert treasury.event_log.sequences is treasury.sequences
        assert treasury.obligations.event_log is treasury.event_log
        assert treasury.assets.event_log is treasury.event_log

    def test_settings_flow_to_services(self, session, deterministic_clock):
        settings = LedgerSettings(default_currency="EUR")
        treasury = TreasuryOrchestrator(session, settings=settings, clock=deterministic_clock)

        assert treasury.accounts.settings is settings
        assert treasury.event_log.settings is settings
        assert treasury.regime.thresholds == settings.regime_thresholds

    def test_from_session_logs_creation(self, session, captured_logs):
        TreasuryOrchestrator.from_session(session, settings=LedgerSettings(allow_overdraft=True))

        record = [r for r in captured_logs() if r["message"] == "treasury_orchestrator_created"][0]
        assert record["allow_overdraft"] is True
        assert record["default_currency"] == "MGA"


class TestCorrelation:
    def test_correlation_id_on_every_record(self, treasury, make_account, post, captured_logs):
        account = make_account("0")

        with treasury.correlated("req-42"):
            post(TargetRef.account(account.id), EventKind.INFLOW, "10", date(2024, 1, 2))

        recorded = [r for r in captured_logs() if r["message"] == "posting_recorded"]
        assert recorded[0]["correlation_id"] == "req-42"

    def test_generated_correlation_id_released_on_exit(self, treasury):
        with treasury.correlated():
            assert "correlation_id" in LogContext.get_all()
        assert "correlation_id" not in LogContext.get_all()
