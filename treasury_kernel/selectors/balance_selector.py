"""
Module: treasury_kernel.selectors.balance_selector
Responsibility: Current balance queries over the materialized running
    totals: a single account, totals per category, and the treasury
    position (liquid accounts) per currency.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Reads the stored running total; never sums history.  Point-in-time
      figures come from the HistoricalReconstructor instead.
    - The treasury position counts active cash, bank and postal accounts
      only; equity is never cash.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from treasury_kernel.domain.values import AccountCategory
from treasury_kernel.exceptions import AccountNotFoundError
from treasury_kernel.models.account import Account
from treasury_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")

_LIQUID_CATEGORIES = tuple(c.value for c in AccountCategory if c.is_liquid)


@dataclass(frozen=True)
class AccountBalanceView:
    """Balance query response for one account."""

    account_id: UUID
    name: str
    category: AccountCategory
    total: Decimal
    currency: str
    last_movement_at: datetime | None
    is_active: bool


@dataclass(frozen=True)
class CategoryTotal:
    category: AccountCategory
    currency: str
    total: Decimal
    account_count: int


class BalanceSelector(BaseSelector):
    """
    Contract:
        ``{account_id} -> {total, currency, last_movement_at}``.

    Non-goals:
        - No currency conversion: totals are grouped per currency.
    """

    def balance(self, account_id: UUID) -> AccountBalanceView:
        account = self.session.get(Account, account_id, populate_existing=True)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return self._view(account)

    def balances(self, include_inactive: bool = False) -> list[AccountBalanceView]:
        query = select(Account).order_by(Account.category, Account.name)
        if not include_inactive:
            query = query.where(Account.is_active.is_(True))
        return [self._view(a) for a in self.session.execute(query).scalars()]

    def totals_by_category(self) -> list[CategoryTotal]:
        """Sum of active account balances per (category, currency)."""
        rows = self.session.execute(
            select(
                Account.category,
                Account.currency,
                func.coalesce(func.sum(Account.balance), 0),
                func.count(Account.id),
            )
            .where(Account.is_active.is_(True))
            .group_by(Account.category, Account.currency)
            .order_by(Account.category, Account.currency)
        ).all()
        return [
            CategoryTotal(
                category=AccountCategory(category),
                currency=currency,
                total=Decimal(total),
                account_count=count,
            )
            for category, currency, total, count in rows
        ]

    def treasury_total(self, currency: str) -> Decimal:
        """Cash position: active cash + bank + postal balances in ``currency``."""
        total = self.session.execute(
            select(func.coalesce(func.sum(Account.balance), 0)).where(
                Account.is_active.is_(True),
                Account.category.in_(_LIQUID_CATEGORIES),
                Account.currency == currency.upper(),
            )
        ).scalar_one()
        return Decimal(total)

    @staticmethod
    def _view(account: Account) -> AccountBalanceView:
        return AccountBalanceView(
            account_id=account.id,
            name=account.name,
            category=AccountCategory(account.category),
            total=account.balance,
            currency=account.currency,
            last_movement_at=account.last_movement_at,
            is_active=account.is_active,
        )
