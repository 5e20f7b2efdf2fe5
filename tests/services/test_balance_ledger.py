"""
Tests for BalanceLedger, the single writer of running totals.

The ledger is exercised directly here; everything else reaches it through
EventLog.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from treasury_kernel.domain.postings import TargetRef
from treasury_kernel.exceptions import ConsistencyError
from treasury_kernel.services.balance_ledger import Adjustment, BalanceLedger


class TestApply:
    def test_increment_moves_total(self, treasury, make_account):
        account = make_account("100")
        updated = treasury.ledger.apply(TargetRef.account(account.id), Decimal("50"))

        assert updated.balance == Decimal("150")
        assert updated.last_movement_at is not None

    def test_deltas_for_one_entity_are_netted(self, treasury, make_account, captured_logs):
        account = make_account("100")
        ref = TargetRef.account(account.id)

        treasury.ledger.apply_all([Adjustment(ref, Decimal("30")), Adjustment(ref, Decimal("-10"))])

        assert treasury.balances.balance(account.id).total == Decimal("120")
        adjusted = [r for r in captured_logs() if r["message"] == "ledger_adjusted"]
        assert len(adjusted) == 1
        assert Decimal(adjusted[0]["delta"]) == Decimal("20")

    def test_zero_net_delta_leaves_row_alone(self, treasury, make_account):
        account = make_account("100")
        ref = TargetRef.account(account.id)

        treasury.ledger.apply_all([Adjustment(ref, Decimal("5")), Adjustment(ref, Decimal("-5"))])

        view = treasury.balances.balance(account.id)
        assert view.total == Decimal("100")
        assert view.last_movement_at is None

    def test_obligation_paid_and_remaining_move_together(self, treasury, make_obligation):
        obligation = make_obligation("1000")
        updated = treasury.ledger.apply(TargetRef.obligation(obligation.id), Decimal("250"))

        assert updated.paid_amount == Decimal("250")
        assert updated.remaining_amount == Decimal("750")

    def test_total_of(self, make_account, make_obligation):
        assert BalanceLedger.total_of(make_account("42")) == Decimal("42")
        assert BalanceLedger.total_of(make_obligation("10")) == Decimal("0")


class TestBounds:
    def test_paid_beyond_original_is_fatal(self, treasury, make_obligation, captured_logs):
        obligation = make_obligation("1000")

        with pytest.raises(ConsistencyError) as exc_info:
            treasury.ledger.apply(TargetRef.obligation(obligation.id), Decimal("1500"))

        assert exc_info.value.entity_type == "obligation"
        assert exc_info.value.entity_id == str(obligation.id)
        records = [r for r in captured_logs() if r["message"] == "ledger_bounds_violated"]
        assert records[0]["level"] == "CRITICAL"

    def test_paid_below_zero_is_fatal(self, treasury, make_obligation):
        obligation = make_obligation("1000")
        with pytest.raises(ConsistencyError):
            treasury.ledger.apply(TargetRef.obligation(obligation.id), Decimal("-1"))

    def test_bounds_checked_before_any_increment(self, treasury, make_account, make_obligation):
        account = make_account("100")
        obligation = make_obligation("1000")

        with pytest.raises(ConsistencyError):
            treasury.ledger.apply_all([
                Adjustment(TargetRef.account(account.id), Decimal("10")),
                Adjustment(TargetRef.obligation(obligation.id), Decimal("2000")),
            ])

        assert treasury.balances.balance(account.id).total == Decimal("100")

    def test_missing_target_is_fatal(self, treasury):
        with pytest.raises(ConsistencyError) as exc_info:
            treasury.ledger.apply(TargetRef.account(uuid4()), Decimal("1"))
        assert exc_info.value.entity_type == "account"


class TestLocking:
    def test_missing_rows_map_to_none(self, treasury):
        ref = TargetRef.account(uuid4())
        assert treasury.ledger.lock([ref]) == {ref: None}

    def test_lock_order_is_global(self, treasury, make_account, make_obligation, captured_logs):
        obligation = make_obligation("1000")
        accounts = [make_account("0") for _ in range(3)]
        refs = [TargetRef.obligation(obligation.id)] + [TargetRef.account(a.id) for a in reversed(accounts)]

        locked = treasury.ledger.lock(refs)

        expected = sorted(refs, key=lambda r: r.lock_key)
        assert list(locked) == expected
        assert list(locked)[-1].target_type == "obligation"
        record = [r for r in captured_logs() if r["message"] == "ledger_rows_locked"][0]
        assert record["targets"] == [f"{t}:{i}" for t, i in (r.lock_key for r in expected)]

    def test_duplicate_refs_locked_once(self, treasury, make_account):
        account = make_account("0")
        ref = TargetRef.account(account.id)
        assert len(treasury.ledger.lock([ref, ref])) == 1
