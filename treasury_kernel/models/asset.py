"""
Module: treasury_kernel.models.asset
Responsibility: ORM persistence for amortized (depreciating) assets.
Architecture position: Kernel > Models.

Invariants enforced (AssetService + domain/depreciation):
    - book_value == acquisition_cost - accumulated_depreciation.
    - accumulated_depreciation never decreases and never exceeds
      acquisition_cost - residual_value.
    - A disposed asset is frozen (db/immutability.py).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from treasury_kernel.db.base import TrackedBase, UUIDString
from treasury_kernel.domain.values import AssetStatus, DepreciationMethod


class AmortizedAsset(TrackedBase):
    """A long-lived asset whose carrying value declines over its useful life."""

    __tablename__ = "amortized_assets"

    __table_args__ = (
        CheckConstraint("acquisition_cost > 0", name="ck_asset_cost_positive"),
        CheckConstraint("residual_value >= 0", name="ck_asset_residual_non_negative"),
        CheckConstraint("residual_value <= acquisition_cost", name="ck_asset_residual_le_cost"),
        CheckConstraint("useful_life_months >= 1", name="ck_asset_life_positive"),
        Index("idx_asset_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    acquisition_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    acquisition_date: Mapped[date] = mapped_column(nullable=False)

    useful_life_months: Mapped[int] = mapped_column(Integer, nullable=False)

    residual_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    method: Mapped[DepreciationMethod] = mapped_column(String(30), nullable=False)

    # Declining-balance acceleration factor (2 = double declining)
    declining_factor: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), nullable=False, default=Decimal("2")
    )

    accumulated_depreciation: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    book_value: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    status: Mapped[AssetStatus] = mapped_column(String(20), nullable=False)

    last_revalued_on: Mapped[date | None] = mapped_column(nullable=True)

    disposal_date: Mapped[date | None] = mapped_column(nullable=True)

    disposal_proceeds: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    disposal_gain_loss: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    disposal_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    funding_event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    disposal_event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<AmortizedAsset {self.name} book={self.book_value} {self.status}>"

    @property
    def depreciable_base(self) -> Decimal:
        return self.acquisition_cost - self.residual_value

    @property
    def is_disposed(self) -> bool:
        return self.status == AssetStatus.DISPOSED
