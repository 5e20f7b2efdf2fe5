"""
AccountService -- opening, maintaining and retiring treasury accounts.

Responsibility:
    Creates accounts with their opening balance, edits descriptive fields,
    deactivates accounts that no longer carry active postings, and records
    bank reconciliation snapshots.

Architecture position:
    Kernel > Services.  Never touches ``balance``; the running total only
    moves through EventLog -> BalanceLedger.

Invariants enforced:
    - At most one active equity account.
    - Bank accounts carry an account number.
    - Currency is a valid ISO 4217 code.
    - Deactivation refused while active postings reference the account.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import to_money, validate_currency
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.settings import LedgerSettings
from treasury_kernel.domain.values import AccountCategory, TargetType
from treasury_kernel.exceptions import (
    AccountNotFoundError,
    AccountReferencedError,
    DuplicateEquityAccountError,
    InactiveTargetError,
    ValidationError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.account import Account
from treasury_kernel.models.ledger_event import LedgerEvent
from treasury_kernel.services.base import BaseService

logger = get_logger("services.account")


@dataclass(frozen=True)
class ReconciliationResult:
    account_id: UUID
    book_balance: Decimal
    statement_balance: Decimal
    difference: Decimal
    reconciled_at: datetime

    @property
    def is_balanced(self) -> bool:
        return self.difference == Decimal("0")


class AccountService(BaseService):
    def __init__(self, session: Session, clock: Clock | None = None, settings: LedgerSettings | None = None):
        super().__init__(session, clock)
        self.settings = settings or LedgerSettings()

    def open_account(
        self,
        name: str,
        category: AccountCategory | str,
        actor_id: UUID,
        opening_date: date,
        opening_balance: Decimal | int | str = Decimal("0"),
        currency: str | None = None,
        account_number: str | None = None,
        bank_name: str | None = None,
        description: str | None = None,
    ) -> Account:
        """
        Create an account whose running total starts at ``opening_balance``.

        Raises:
            ValidationError: blank name, unknown category, bank account
                without account number, non-numeric opening balance.
            InvalidCurrencyError: currency is not ISO 4217.
            DuplicateEquityAccountError: an active equity account exists.
        """
        if not name or not name.strip():
            raise ValidationError("account name is required", field="name")
        try:
            category = AccountCategory(category)
        except ValueError as exc:
            raise ValidationError(f"unknown account category {category!r}", field="category") from exc
        if not isinstance(opening_date, date) or isinstance(opening_date, datetime):
            raise ValidationError("opening_date must be a date", field="opening_date")
        opening = to_money(opening_balance, "opening_balance")
        currency = validate_currency(currency or self.settings.default_currency)

        if category is AccountCategory.BANK and not (account_number and account_number.strip()):
            raise ValidationError("bank accounts require an account number", field="account_number")

        if category is AccountCategory.EQUITY:
            existing = self.session.execute(
                select(Account.id)
                .where(Account.category == AccountCategory.EQUITY.value, Account.is_active.is_(True))
                .with_for_update()
            ).scalars().first()
            if existing is not None:
                raise DuplicateEquityAccountError(str(existing))

        account = Account(
            name=name.strip(),
            category=category.value,
            currency=currency,
            opening_balance=opening,
            opening_date=opening_date,
            balance=opening,
            is_active=True,
            account_number=account_number,
            bank_name=bank_name,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_opened",
            extra={
                "account_id": str(account.id),
                "category": category.value,
                "currency": currency,
                "opening_balance": opening,
            },
        )
        return account

    def get(self, account_id: UUID) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def update_details(
        self,
        account_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        description: str | None = None,
        account_number: str | None = None,
        bank_name: str | None = None,
    ) -> Account:
        """Change descriptive fields.  Balances and currency are not editable here."""
        account = self.get(account_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("account name is required", field="name")
            account.name = name.strip()
        if description is not None:
            account.description = description
        if bank_name is not None:
            account.bank_name = bank_name
        if account_number is not None:
            if account.category == AccountCategory.BANK and not account_number.strip():
                raise ValidationError("bank accounts require an account number", field="account_number")
            account.account_number = account_number
        account.updated_by_id = actor_id
        self.session.flush()
        return account

    def deactivate(self, account_id: UUID, actor_id: UUID) -> Account:
        """
        Retire an account.  Refused while any non-reversed posting still
        references it; reverse or move those postings first.
        """
        account = self.session.execute(
            select(Account).where(Account.id == account_id).with_for_update()
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        if not account.is_active:
            raise InactiveTargetError(TargetType.ACCOUNT.value, str(account_id))

        active_events = self.session.execute(
            select(func.count(LedgerEvent.id)).where(
                LedgerEvent.target_type == TargetType.ACCOUNT.value,
                LedgerEvent.target_id == account_id,
                LedgerEvent.is_reversed.is_(False),
            )
        ).scalar_one()
        if active_events:
            raise AccountReferencedError(str(account_id), active_events)

        account.is_active = False
        account.closed_at = self.clock.now()
        account.updated_by_id = actor_id
        self.session.flush()

        logger.info("account_deactivated", extra={"account_id": str(account_id)})
        return account

    def reconcile(
        self,
        account_id: UUID,
        statement_balance: Decimal | int | str,
        actor_id: UUID,
        reconciled_at: datetime | None = None,
    ) -> ReconciliationResult:
        """
        Store an externally confirmed balance and report its difference
        from the book balance (book - statement).  The book balance is not
        touched.
        """
        statement = to_money(statement_balance, "statement_balance")
        account = self.get(account_id)
        when = reconciled_at or self.clock.now()

        account.reconciled_balance = statement
        account.last_reconciled_at = when
        account.updated_by_id = actor_id
        self.session.flush()

        difference = account.balance - statement
        log = logger.info if difference == 0 else logger.warning
        log(
            "account_reconciled",
            extra={
                "account_id": str(account_id),
                "book_balance": account.balance,
                "statement_balance": statement,
                "difference": difference,
            },
        )
        return ReconciliationResult(
            account_id=account.id,
            book_balance=account.balance,
            statement_balance=statement,
            difference=difference,
            reconciled_at=when,
        )
