"""
Module: treasury_kernel.selectors.integrity_selector
Responsibility: Full-scan verification that every materialized running
    total equals what the posting log says it should be.
Architecture position: Kernel > Selectors.  Read-only.

This is the slow path the running totals exist to avoid.  It is used by
the test suite after every scenario and by manual reconciliation, never on
the posting hot path.

Invariants checked:
    - account.balance == opening_balance + sum(active signed deltas).
    - obligation.paid_amount == sum(active payments) and
      remaining_amount == original_amount - paid_amount, 0 <= paid <= original.
    - asset.book_value == acquisition_cost - accumulated_depreciation, with
      0 <= accumulated_depreciation <= acquisition_cost - residual_value.
    - Every transfer group has one outflow and one inflow of equal amount,
      date and reversal state.
"""

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from treasury_kernel.domain.values import EventKind, GroupRole, TargetType
from treasury_kernel.exceptions import ConsistencyError
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.account import Account
from treasury_kernel.models.asset import AmortizedAsset
from treasury_kernel.models.ledger_event import LedgerEvent
from treasury_kernel.models.obligation import Obligation
from treasury_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.integrity")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class Discrepancy:
    entity_type: str
    entity_id: UUID
    field: str
    stored: Decimal | str
    expected: Decimal | str


@dataclass(frozen=True)
class IntegrityReport:
    accounts_checked: int
    obligations_checked: int
    assets_checked: int
    groups_checked: int
    discrepancies: tuple[Discrepancy, ...]

    @property
    def is_consistent(self) -> bool:
        return not self.discrepancies


class IntegritySelector(BaseSelector):
    """
    Contract:
        ``verify()`` never raises on a discrepancy; it reports.
        ``assert_consistent()`` raises ConsistencyError on the first report
        that is not clean.
    """

    def _active_sums(self, target_type: TargetType) -> dict[UUID, Decimal]:
        sums: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
        rows = self.session.execute(
            select(LedgerEvent.target_id, LedgerEvent.kind, LedgerEvent.amount).where(
                LedgerEvent.target_type == target_type.value,
                LedgerEvent.is_reversed.is_(False),
            )
        )
        for target_id, kind, amount in rows:
            sums[target_id] += EventKind(kind).signed(amount)
        return sums

    def verify_accounts(self) -> tuple[int, list[Discrepancy]]:
        sums = self._active_sums(TargetType.ACCOUNT)
        found = []
        accounts = self.session.execute(
            select(Account).execution_options(populate_existing=True)
        ).scalars().all()
        for account in accounts:
            expected = account.opening_balance + sums.get(account.id, _ZERO)
            if account.balance != expected:
                found.append(Discrepancy("account", account.id, "balance", account.balance, expected))
        return len(accounts), found

    def verify_obligations(self) -> tuple[int, list[Discrepancy]]:
        sums = self._active_sums(TargetType.OBLIGATION)
        found = []
        obligations = self.session.execute(
            select(Obligation).execution_options(populate_existing=True)
        ).scalars().all()
        for obligation in obligations:
            expected_paid = sums.get(obligation.id, _ZERO)
            if obligation.paid_amount != expected_paid:
                found.append(
                    Discrepancy("obligation", obligation.id, "paid_amount",
                                obligation.paid_amount, expected_paid)
                )
            expected_remaining = obligation.original_amount - obligation.paid_amount
            if obligation.remaining_amount != expected_remaining:
                found.append(
                    Discrepancy("obligation", obligation.id, "remaining_amount",
                                obligation.remaining_amount, expected_remaining)
                )
            if not (_ZERO <= obligation.paid_amount <= obligation.original_amount):
                found.append(
                    Discrepancy("obligation", obligation.id, "paid_amount",
                                obligation.paid_amount, f"0..{obligation.original_amount}")
                )
        return len(obligations), found

    def verify_assets(self) -> tuple[int, list[Discrepancy]]:
        found = []
        assets = self.session.execute(
            select(AmortizedAsset).execution_options(populate_existing=True)
        ).scalars().all()
        for asset in assets:
            expected_book = asset.acquisition_cost - asset.accumulated_depreciation
            if asset.book_value != expected_book:
                found.append(
                    Discrepancy("asset", asset.id, "book_value", asset.book_value, expected_book)
                )
            if not (_ZERO <= asset.accumulated_depreciation <= asset.depreciable_base):
                found.append(
                    Discrepancy("asset", asset.id, "accumulated_depreciation",
                                asset.accumulated_depreciation, f"0..{asset.depreciable_base}")
                )
        return len(assets), found

    def verify_transfer_groups(self) -> tuple[int, list[Discrepancy]]:
        legs = self.session.execute(
            select(LedgerEvent)
            .where(LedgerEvent.group_role.in_(
                (GroupRole.TRANSFER_OUT.value, GroupRole.TRANSFER_IN.value)
            ))
            .order_by(LedgerEvent.seq)
        ).scalars().all()
        groups: dict[UUID, list[LedgerEvent]] = defaultdict(list)
        for leg in legs:
            groups[leg.group_id].append(leg)

        found = []
        for group_id, members in groups.items():
            roles = sorted(GroupRole(m.group_role).value for m in members)
            shape = (
                roles == [GroupRole.TRANSFER_IN.value, GroupRole.TRANSFER_OUT.value]
                and len({m.amount for m in members}) == 1
                and len({m.event_date for m in members}) == 1
                and len({m.is_reversed for m in members}) == 1
            )
            if not shape:
                found.append(
                    Discrepancy("transfer_group", group_id, "legs", f"{len(members)} legs", "balanced pair")
                )
        return len(groups), found

    def verify(self) -> IntegrityReport:
        accounts, account_issues = self.verify_accounts()
        obligations, obligation_issues = self.verify_obligations()
        assets, asset_issues = self.verify_assets()
        groups, group_issues = self.verify_transfer_groups()
        report = IntegrityReport(
            accounts_checked=accounts,
            obligations_checked=obligations,
            assets_checked=assets,
            groups_checked=groups,
            discrepancies=tuple(account_issues + obligation_issues + asset_issues + group_issues),
        )
        logger.info(
            "integrity_verified",
            extra={
                "accounts": accounts,
                "obligations": obligations,
                "assets": assets,
                "groups": groups,
                "discrepancies": len(report.discrepancies),
            },
        )
        return report

    def assert_consistent(self) -> IntegrityReport:
        report = self.verify()
        if not report.is_consistent:
            first = report.discrepancies[0]
            logger.critical(
                "integrity_violation",
                extra={
                    "entity_type": first.entity_type,
                    "entity_id": str(first.entity_id),
                    "field": first.field,
                    "stored": str(first.stored),
                    "expected": str(first.expected),
                    "discrepancies": len(report.discrepancies),
                },
            )
            raise ConsistencyError(
                f"{first.entity_type} {first.entity_id} {first.field}: "
                f"stored {first.stored}, expected {first.expected}",
                entity_type=first.entity_type,
                entity_id=str(first.entity_id),
            )
        return report
