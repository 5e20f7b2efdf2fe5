"""Tests for RegimeSelector: period turnover against ascending cutoffs."""

from datetime import date
from decimal import Decimal

import pytest

from treasury_kernel.domain.classification import RegimeThresholds
from treasury_kernel.domain.postings import TargetRef, TransferRequest
from treasury_kernel.domain.values import EventKind, Regime
from treasury_kernel.selectors.regime_selector import RegimeSelector

YEAR_2024 = (date(2024, 1, 1), date(2024, 12, 31))

SMALL = RegimeThresholds(first=Decimal("1000"), second=Decimal("2000"), third=Decimal("3000"))


@pytest.fixture
def regime(session):
    return RegimeSelector(session, SMALL)


class TestRegimeForPeriod:
    def test_no_turnover_is_lowest_tier(self, treasury):
        assessment = treasury.regime.regime_for_period(*YEAR_2024)
        assert assessment.turnover == Decimal("0")
        assert assessment.regime is Regime.MINIMAL_CASH_SIMPLE

    @pytest.mark.parametrize(
        "amount, expected",
        [
            ("1000", Regime.MINIMAL_CASH_SIMPLE),
            ("1001", Regime.MINIMAL_CASH_FULL),
            ("2000", Regime.MINIMAL_CASH_FULL),
            ("2500", Regime.SIMPLIFIED_ACCOUNTING),
            ("3001", Regime.FULL_ACCOUNTING),
        ],
    )
    def test_tiers(self, regime, make_account, post, amount, expected):
        account = make_account("0")
        post(TargetRef.account(account.id), EventKind.INFLOW, amount, date(2024, 6, 1))

        assessment = regime.regime_for_period(*YEAR_2024)

        assert assessment.turnover == Decimal(amount)
        assert assessment.regime is expected
        assert assessment.thresholds is SMALL

    def test_transfers_do_not_raise_tier(self, regime, make_account, post, event_log, test_actor_id):
        a = make_account("0")
        b = make_account("0")
        post(TargetRef.account(a.id), EventKind.INFLOW, "900", date(2024, 6, 1))
        event_log.transfer(TransferRequest(a.id, b.id, Decimal("900"), date(2024, 6, 2)), test_actor_id)

        assert regime.regime_for_period(*YEAR_2024).regime is Regime.MINIMAL_CASH_SIMPLE

    def test_period_bounds(self, regime, make_account, post):
        account = make_account("0")
        post(TargetRef.account(account.id), EventKind.INFLOW, "5000", date(2024, 6, 1))

        assessment = regime.regime_for_period(date(2024, 7, 1), date(2024, 12, 31))

        assert assessment.turnover == Decimal("0")

    def test_override_thresholds_per_call(self, regime, make_account, post):
        account = make_account("0")
        post(TargetRef.account(account.id), EventKind.INFLOW, "1500", date(2024, 6, 1))
        wide = RegimeThresholds(first=Decimal("5000"), second=Decimal("6000"), third=Decimal("7000"))

        assert regime.regime_for_period(*YEAR_2024, thresholds=wide).regime is Regime.MINIMAL_CASH_SIMPLE
