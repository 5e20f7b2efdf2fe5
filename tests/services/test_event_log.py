"""
Tests for EventLog: recording, amending and reversing postings.

Covers:
- Exactly-once application of a posting's delta to its target
- Generated references ({PREFIX}-{YYYYMM}-{NNNN})
- Rejections happen before any mutation
- Amendment as reverse-old + apply-new, including target and kind moves
- Reversal is idempotent (second reversal is NO_EFFECT)
- Lock conflicts surface as retryable errors; other storage failures are fatal
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from treasury_kernel.domain.postings import EventAmendment, PostingRequest, TargetRef
from treasury_kernel.domain.values import EventKind, ObligationKind, Outcome
from treasury_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyReversedError,
    ConcurrencyConflictError,
    ConsistencyError,
    CurrencyMismatchError,
    EventNotFoundError,
    InactiveTargetError,
    ObligationNotFoundError,
    OverpaymentError,
    ValidationError,
)
from treasury_kernel.selectors.event_selector import EventFilter
from treasury_kernel.services.balance_ledger import BalanceLedger

INFLOW = EventKind.INFLOW
OUTFLOW = EventKind.OUTFLOW


def _balance(treasury, account) -> Decimal:
    return treasury.balances.balance(account.id).total


class TestRecord:
    """Recording a posting moves the target total exactly once."""

    def test_inflow_increases_balance(self, treasury, make_account, post):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        assert _balance(treasury, account) == Decimal("1500")
        assert event.signed_delta == Decimal("500")
        assert event.is_reversed is False
        assert event.revision == 0

    def test_outflow_decreases_balance(self, treasury, make_account, post):
        account = make_account("1000")
        post(TargetRef.account(account.id), OUTFLOW, "200", date(2024, 1, 2))

        assert _balance(treasury, account) == Decimal("800")

    def test_last_movement_recorded(self, treasury, make_account, post, deterministic_clock):
        account = make_account()
        post(TargetRef.account(account.id), INFLOW, "10", date(2024, 1, 2))

        assert treasury.balances.balance(account.id).last_movement_at is not None

    def test_references_numbered_per_prefix_and_month(self, make_account, post):
        account = make_account("1000")
        target = TargetRef.account(account.id)

        first = post(target, INFLOW, "1", date(2024, 1, 5))
        second = post(target, INFLOW, "1", date(2024, 1, 20))
        expense = post(target, OUTFLOW, "1", date(2024, 1, 21))
        february = post(target, INFLOW, "1", date(2024, 2, 1))

        assert first.reference == "REC-202401-0001"
        assert second.reference == "REC-202401-0002"
        assert expense.reference == "EXP-202401-0001"
        assert february.reference == "REC-202402-0001"

    def test_explicit_reference_kept(self, make_account, post):
        account = make_account()
        event = post(TargetRef.account(account.id), INFLOW, "1", date(2024, 1, 5), reference="INV-77")
        assert event.reference == "INV-77"

    def test_seq_strictly_increasing(self, make_account, post):
        account = make_account()
        target = TargetRef.account(account.id)
        seqs = [post(target, INFLOW, "1", date(2024, 1, 5)).seq for _ in range(5)]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 5

    def test_posting_logged(self, make_account, post, captured_logs):
        account = make_account()
        post(TargetRef.account(account.id), INFLOW, "25", date(2024, 1, 5))

        records = [r for r in captured_logs() if r["message"] == "posting_recorded"]
        assert len(records) == 1
        assert records[0]["amount"] == "25"
        assert records[0]["kind"] == "inflow"
        assert records[0]["target_id"] == str(account.id)


class TestRecordRejections:
    """Rejected postings leave totals and the log untouched."""

    @pytest.mark.parametrize(
        "amount",
        [Decimal("0"), Decimal("-5"), 1.5, "abc", Decimal("10.0000000004"), Decimal("0.0000000001")],
    )
    def test_bad_amount(self, treasury, make_account, event_log, test_actor_id, amount):
        account = make_account("1000")
        with pytest.raises(ValidationError) as exc_info:
            event_log.record(
                PostingRequest(TargetRef.account(account.id), INFLOW, amount, date(2024, 1, 2)),
                test_actor_id,
            )
        assert exc_info.value.field == "amount"
        assert _balance(treasury, account) == Decimal("1000")
        assert treasury.events.list_events() == []

    def test_bad_kind(self, make_account, event_log, test_actor_id):
        account = make_account()
        with pytest.raises(ValidationError) as exc_info:
            event_log.record(
                PostingRequest(TargetRef.account(account.id), "sideways", Decimal("1"), date(2024, 1, 2)),
                test_actor_id,
            )
        assert exc_info.value.field == "kind"

    def test_datetime_is_not_a_date(self, make_account, post):
        account = make_account()
        with pytest.raises(ValidationError):
            post(TargetRef.account(account.id), INFLOW, "1", datetime(2024, 1, 2, 10, 0))

    def test_date_before_opening(self, treasury, make_account, post):
        account = make_account("1000")
        with pytest.raises(ValidationError) as exc_info:
            post(TargetRef.account(account.id), INFLOW, "1", date(2023, 12, 31))
        assert exc_info.value.field == "event_date"
        assert _balance(treasury, account) == Decimal("1000")

    def test_unknown_account(self, post):
        with pytest.raises(AccountNotFoundError):
            post(TargetRef.account(uuid4()), INFLOW, "1", date(2024, 1, 2))

    def test_unknown_obligation(self, post):
        with pytest.raises(ObligationNotFoundError):
            post(TargetRef.obligation(uuid4()), INFLOW, "1", date(2024, 1, 2))

    def test_inactive_account(self, treasury, make_account, post, test_actor_id):
        account = make_account()
        treasury.accounts.deactivate(account.id, test_actor_id)
        with pytest.raises(InactiveTargetError):
            post(TargetRef.account(account.id), INFLOW, "1", date(2024, 1, 2))

    def test_outflow_against_obligation(self, make_obligation, post):
        obligation = make_obligation("1000")
        with pytest.raises(ValidationError):
            post(TargetRef.obligation(obligation.id), OUTFLOW, "100", date(2024, 1, 2))

    def test_overpayment(self, treasury, make_obligation, post):
        obligation = make_obligation("1000")
        with pytest.raises(OverpaymentError):
            post(TargetRef.obligation(obligation.id), INFLOW, "1000.01", date(2024, 1, 2))
        assert treasury.obligation_views.view(obligation.id, date(2024, 1, 2)).paid_amount == Decimal("0")

    def test_group_needs_two_legs(self, make_account, event_log, test_actor_id):
        account = make_account()
        with pytest.raises(ValidationError):
            event_log.record_group(
                [PostingRequest(TargetRef.account(account.id), INFLOW, Decimal("1"), date(2024, 1, 2))],
                test_actor_id,
            )


class TestAmend:
    """Amendment replaces the old effect with the new one in one step."""

    def test_amend_amount(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        amended = event_log.amend(event.id, EventAmendment(amount=Decimal("800")), test_actor_id)

        assert _balance(treasury, account) == Decimal("1800")
        assert amended.revision == 1
        revisions = treasury.events.revisions(event.id)
        assert len(revisions) == 1
        assert revisions[0].previous_amount == Decimal("500")
        assert revisions[0].revision == 1

    def test_amend_kind(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        event_log.amend(event.id, EventAmendment(kind=OUTFLOW), test_actor_id)

        assert _balance(treasury, account) == Decimal("500")

    def test_amend_target_account(self, treasury, make_account, post, event_log, test_actor_id):
        source = make_account("1000")
        other = make_account("0")
        event = post(TargetRef.account(source.id), INFLOW, "500", date(2024, 1, 2))

        event_log.amend(event.id, EventAmendment(target=TargetRef.account(other.id)), test_actor_id)

        assert _balance(treasury, source) == Decimal("1000")
        assert _balance(treasury, other) == Decimal("500")
        treasury.integrity.assert_consistent()

    def test_amend_across_target_types(self, treasury, make_account, make_obligation, post, event_log, test_actor_id):
        account = make_account("1000")
        obligation = make_obligation("1000")
        event = post(TargetRef.account(account.id), INFLOW, "300", date(2024, 1, 2))

        event_log.amend(event.id, EventAmendment(target=TargetRef.obligation(obligation.id)), test_actor_id)

        assert _balance(treasury, account) == Decimal("1000")
        view = treasury.obligation_views.view(obligation.id, date(2024, 1, 2))
        assert view.paid_amount == Decimal("300")
        assert view.remaining_amount == Decimal("700")

    def test_amend_round_trip_restores_total(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        event_log.amend(event.id, EventAmendment(amount=Decimal("800")), test_actor_id)
        event_log.amend(event.id, EventAmendment(amount=Decimal("500")), test_actor_id)

        assert _balance(treasury, account) == Decimal("1500")
        assert len(treasury.events.revisions(event.id)) == 2

    def test_amend_date_keeps_total(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        event_log.amend(event.id, EventAmendment(event_date=date(2024, 3, 1)), test_actor_id)

        assert _balance(treasury, account) == Decimal("1500")
        assert treasury.history.balance_as_of(account.id, date(2024, 2, 1)) == Decimal("1000")
        assert treasury.history.balance_as_of(account.id, date(2024, 3, 1)) == Decimal("1500")

    def test_no_change_is_a_no_op(self, treasury, make_account, post, event_log, test_actor_id, captured_logs):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        result = event_log.amend(event.id, EventAmendment(amount=Decimal("500")), test_actor_id)

        assert result.revision == 0
        assert treasury.events.revisions(event.id) == []
        assert any(r["message"] == "event_amend_no_change" for r in captured_logs())

    def test_description_only(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        event_log.amend(event.id, EventAmendment(description="Corrected label"), test_actor_id)

        assert treasury.events.view(event.id).description == "Corrected label"
        assert _balance(treasury, account) == Decimal("1500")

    def test_amend_payment_above_remaining(self, treasury, make_obligation, post, event_log, test_actor_id):
        obligation = make_obligation("1000")
        payment = post(TargetRef.obligation(obligation.id), INFLOW, "600", date(2024, 1, 2))

        with pytest.raises(OverpaymentError):
            event_log.amend(payment.id, EventAmendment(amount=Decimal("1200")), test_actor_id)
        assert treasury.obligation_views.view(obligation.id, date(2024, 1, 2)).paid_amount == Decimal("600")

        event_log.amend(payment.id, EventAmendment(amount=Decimal("1000")), test_actor_id)
        assert treasury.obligation_views.view(obligation.id, date(2024, 1, 2)).remaining_amount == Decimal("0")

    def test_amend_to_inactive_target(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        closed = make_account("0")
        treasury.accounts.deactivate(closed.id, test_actor_id)
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        with pytest.raises(InactiveTargetError):
            event_log.amend(event.id, EventAmendment(target=TargetRef.account(closed.id)), test_actor_id)
        assert _balance(treasury, account) == Decimal("1500")

    def test_amend_target_in_other_currency(self, treasury, make_account, post, event_log, test_actor_id):
        local = make_account("1000")
        euro = make_account("0", currency="EUR")
        event = post(TargetRef.account(local.id), INFLOW, "500000", date(2024, 1, 2))

        with pytest.raises(CurrencyMismatchError) as exc_info:
            event_log.amend(event.id, EventAmendment(target=TargetRef.account(euro.id)), test_actor_id)

        assert (exc_info.value.expected, exc_info.value.received) == ("MGA", "EUR")
        assert _balance(treasury, local) == Decimal("501000")
        assert _balance(treasury, euro) == Decimal("0")
        assert treasury.events.view(event.id).target == TargetRef.account(local.id)

    def test_amend_onto_obligation_in_other_currency(
        self, treasury, make_account, make_obligation, post, event_log, test_actor_id
    ):
        account = make_account("1000")
        invoice = make_obligation("1000", currency="EUR")
        event = post(TargetRef.account(account.id), INFLOW, "300", date(2024, 1, 2))

        with pytest.raises(CurrencyMismatchError):
            event_log.amend(event.id, EventAmendment(target=TargetRef.obligation(invoice.id)), test_actor_id)
        assert treasury.obligation_views.view(invoice.id, date(2024, 1, 2)).paid_amount == Decimal("0")

    def test_amend_amount_beyond_column_scale(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        with pytest.raises(ValidationError) as exc_info:
            event_log.amend(event.id, EventAmendment(amount=Decimal("500.0000000001")), test_actor_id)

        assert exc_info.value.field == "amount"
        assert _balance(treasury, account) == Decimal("1500")

    def test_amend_reversed_event(self, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        event = post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))
        event_log.reverse(event.id, test_actor_id)

        with pytest.raises(AlreadyReversedError):
            event_log.amend(event.id, EventAmendment(amount=Decimal("1")), test_actor_id)

    def test_amend_unknown_event(self, event_log, test_actor_id):
        with pytest.raises(EventNotFoundError):
            event_log.amend(uuid4(), EventAmendment(amount=Decimal("1")), test_actor_id)


class TestReverse:
    """Reversal backs out a posting exactly once."""

    def test_reverse_restores_total(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1500")
        event = post(TargetRef.account(account.id), OUTFLOW, "200", date(2024, 1, 2))
        assert _balance(treasury, account) == Decimal("1300")

        result = event_log.reverse(event.id, test_actor_id, reason="duplicate")

        assert result.outcome is Outcome.APPLIED
        assert result.reversed_event_ids == (event.id,)
        assert _balance(treasury, account) == Decimal("1500")
        view = treasury.events.view(event.id)
        assert view.is_reversed is True

    def test_second_reversal_has_no_effect(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1500")
        event = post(TargetRef.account(account.id), OUTFLOW, "200", date(2024, 1, 2))

        event_log.reverse(event.id, test_actor_id)
        again = event_log.reverse(event.id, test_actor_id)

        assert again.outcome is Outcome.NO_EFFECT
        assert again.is_no_effect
        assert again.reversed_event_ids == ()
        assert _balance(treasury, account) == Decimal("1500")

    def test_reversal_records_audit_fields(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1500")
        event = post(TargetRef.account(account.id), OUTFLOW, "200", date(2024, 1, 2))

        event_log.reverse(event.id, test_actor_id, reason="keyed twice")

        stored = treasury.events.get(event.id)
        assert stored.reversal_reason == "keyed twice"
        assert stored.reversed_by_id == test_actor_id
        assert stored.reversed_at is not None

    def test_reverse_payment_reopens_obligation(self, treasury, make_obligation, post, event_log, test_actor_id):
        obligation = make_obligation("1000")
        payment = post(TargetRef.obligation(obligation.id), INFLOW, "1000", date(2024, 1, 2))

        event_log.reverse(payment.id, test_actor_id)

        view = treasury.obligation_views.view(obligation.id, date(2024, 1, 2))
        assert view.paid_amount == Decimal("0")
        assert view.remaining_amount == Decimal("1000")

    def test_reverse_unknown_event(self, event_log, test_actor_id):
        with pytest.raises(EventNotFoundError):
            event_log.reverse(uuid4(), test_actor_id)

    def test_reversed_events_listed_separately(self, treasury, make_account, post, event_log, test_actor_id):
        account = make_account("1000")
        kept = post(TargetRef.account(account.id), INFLOW, "1", date(2024, 1, 2))
        dropped = post(TargetRef.account(account.id), INFLOW, "2", date(2024, 1, 3))
        event_log.reverse(dropped.id, test_actor_id)

        active = treasury.events.list_events(EventFilter(reversed=False))
        reversed_only = treasury.events.list_events(EventFilter(reversed=True))

        assert [e.event_id for e in active] == [kept.id]
        assert [e.event_id for e in reversed_only] == [dropped.id]


class _LockNotAvailable(Exception):
    pgcode = "55P03"


class _CheckViolation(Exception):
    pgcode = "23514"


class TestStorageFailures:
    """Database errors inside a unit of work are rolled back and typed."""

    @pytest.fixture
    def failing_increment(self, monkeypatch):
        def _install(error):
            def _raise(self, ref, delta, moved_at):
                raise error

            monkeypatch.setattr(BalanceLedger, "_increment", _raise)

        return _install

    def test_lock_timeout_is_retryable(self, treasury, make_account, post, failing_increment, captured_logs):
        account = make_account("1000")
        failing_increment(
            OperationalError("UPDATE accounts", {}, _LockNotAvailable("canceling statement due to lock timeout"))
        )

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        assert exc_info.value.code == "CONCURRENCY_CONFLICT"
        assert exc_info.value.operation == "posting"
        assert _balance(treasury, account) == Decimal("1000")
        assert treasury.events.list_events() == []
        logs = captured_logs()
        conflict = [r for r in logs if r["message"] == "posting_conflict"]
        assert conflict[0]["level"] == "WARNING"
        assert not any(r["level"] == "CRITICAL" for r in logs)

    def test_busy_sqlite_database_is_retryable(self, make_account, post, failing_increment):
        account = make_account("1000")
        failing_increment(OperationalError("UPDATE accounts", {}, Exception("database is locked")))

        with pytest.raises(ConcurrencyConflictError):
            post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

    def test_other_database_errors_stay_fatal(self, treasury, make_account, post, failing_increment, captured_logs):
        account = make_account("1000")
        failing_increment(IntegrityError("UPDATE accounts", {}, _CheckViolation("check constraint")))

        with pytest.raises(ConsistencyError):
            post(TargetRef.account(account.id), INFLOW, "500", date(2024, 1, 2))

        assert _balance(treasury, account) == Decimal("1000")
        assert any(
            r["message"] == "posting_rolled_back" and r["level"] == "CRITICAL" for r in captured_logs()
        )
