"""
Tests for AccountService: opening rules, descriptive edits, deactivation
and bank reconciliation.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from treasury_kernel.domain.postings import TargetRef
from treasury_kernel.domain.values import AccountCategory, EventKind
from treasury_kernel.exceptions import (
    AccountNotFoundError,
    AccountReferencedError,
    DuplicateEquityAccountError,
    InactiveTargetError,
    InvalidCurrencyError,
    ValidationError,
)


class TestOpenAccount:
    def test_opening_balance_is_running_total(self, make_account):
        account = make_account("2500")
        assert account.balance == Decimal("2500")
        assert account.opening_balance == Decimal("2500")
        assert account.currency == "MGA"
        assert account.is_active

    def test_negative_opening_balance_allowed(self, make_account):
        assert make_account("-50").balance == Decimal("-50")

    def test_bank_account_needs_number(self, treasury, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            treasury.accounts.open_account(
                name="BNI", category=AccountCategory.BANK, actor_id=test_actor_id, opening_date=date(2024, 1, 1)
            )
        assert exc_info.value.field == "account_number"

    def test_bank_account_with_number(self, make_account):
        account = make_account("0", category=AccountCategory.BANK, account_number="00005-12345")
        assert account.account_number == "00005-12345"

    def test_single_active_equity_account(self, make_account):
        make_account("10000", category=AccountCategory.EQUITY)
        with pytest.raises(DuplicateEquityAccountError):
            make_account("0", category=AccountCategory.EQUITY)

    def test_equity_allowed_again_after_deactivation(self, treasury, make_account, test_actor_id):
        first = make_account("0", category=AccountCategory.EQUITY)
        treasury.accounts.deactivate(first.id, test_actor_id)
        second = make_account("0", category=AccountCategory.EQUITY)
        assert second.is_active

    def test_invalid_currency(self, make_account):
        with pytest.raises(InvalidCurrencyError):
            make_account("0", currency="ABC")

    def test_unknown_category(self, make_account):
        with pytest.raises(ValidationError):
            make_account("0", category="piggy_bank")

    def test_blank_name(self, treasury, test_actor_id):
        with pytest.raises(ValidationError):
            treasury.accounts.open_account(
                name="   ", category=AccountCategory.CASH, actor_id=test_actor_id, opening_date=date(2024, 1, 1)
            )

    def test_float_opening_balance(self, make_account, treasury, test_actor_id):
        with pytest.raises(ValidationError):
            treasury.accounts.open_account(
                name="Till", category=AccountCategory.CASH, actor_id=test_actor_id,
                opening_date=date(2024, 1, 1), opening_balance=10.5,
            )

    def test_opening_logged(self, make_account, captured_logs):
        account = make_account("5")
        records = [r for r in captured_logs() if r["message"] == "account_opened"]
        assert records[0]["account_id"] == str(account.id)


class TestUpdateDetails:
    def test_rename(self, treasury, make_account, test_actor_id):
        account = make_account("0")
        treasury.accounts.update_details(account.id, test_actor_id, name="Petty cash", description="Front desk")

        assert treasury.accounts.get(account.id).name == "Petty cash"
        assert account.updated_by_id == test_actor_id

    def test_bank_number_cannot_be_blanked(self, treasury, make_account, test_actor_id):
        account = make_account("0", category=AccountCategory.BANK)
        with pytest.raises(ValidationError):
            treasury.accounts.update_details(account.id, test_actor_id, account_number=" ")

    def test_unknown_account(self, treasury, test_actor_id):
        with pytest.raises(AccountNotFoundError):
            treasury.accounts.update_details(uuid4(), test_actor_id, name="x")


class TestDeactivate:
    def test_refused_while_postings_reference_account(self, treasury, make_account, post, test_actor_id):
        account = make_account("0")
        post(TargetRef.account(account.id), EventKind.INFLOW, "10", date(2024, 1, 2))

        with pytest.raises(AccountReferencedError) as exc_info:
            treasury.accounts.deactivate(account.id, test_actor_id)
        assert exc_info.value.active_events == 1

    def test_allowed_once_postings_reversed(self, treasury, make_account, post, test_actor_id):
        account = make_account("0")
        event = post(TargetRef.account(account.id), EventKind.INFLOW, "10", date(2024, 1, 2))
        treasury.event_log.reverse(event.id, test_actor_id)

        closed = treasury.accounts.deactivate(account.id, test_actor_id)

        assert closed.is_active is False
        assert closed.closed_at is not None

    def test_deactivate_twice(self, treasury, make_account, test_actor_id):
        account = make_account("0")
        treasury.accounts.deactivate(account.id, test_actor_id)
        with pytest.raises(InactiveTargetError):
            treasury.accounts.deactivate(account.id, test_actor_id)

    def test_inactive_accounts_hidden_from_balances(self, treasury, make_account, test_actor_id):
        kept = make_account("0")
        closed = make_account("0")
        treasury.accounts.deactivate(closed.id, test_actor_id)

        assert [v.account_id for v in treasury.balances.balances()] == [kept.id]
        assert len(treasury.balances.balances(include_inactive=True)) == 2


class TestReconcile:
    def test_balanced(self, treasury, make_account, test_actor_id):
        account = make_account("1000")
        result = treasury.accounts.reconcile(account.id, Decimal("1000"), test_actor_id)

        assert result.is_balanced
        assert account.reconciled_balance == Decimal("1000")

    def test_difference_reported_book_minus_statement(self, treasury, make_account, test_actor_id, captured_logs):
        account = make_account("1000")
        when = datetime(2024, 1, 31, 18, 0, tzinfo=timezone.utc)

        result = treasury.accounts.reconcile(account.id, "950", test_actor_id, reconciled_at=when)

        assert result.difference == Decimal("50")
        assert result.reconciled_at == when
        assert treasury.balances.balance(account.id).total == Decimal("1000")
        records = [r for r in captured_logs() if r["message"] == "account_reconciled"]
        assert records[0]["level"] == "WARNING"
