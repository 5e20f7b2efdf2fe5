"""
AssetService -- acquisition, periodic revaluation and disposal of
amortized assets.

Responsibility:
    Persists the depreciation schedule's current position
    (accumulated depreciation, book value, status) and freezes the asset
    on disposal with its gain or loss.  Optional cash legs (paying for the
    asset, receiving sale proceeds) are ordinary EventLog postings.

Architecture position:
    Kernel > Services.  Schedule arithmetic lives in domain/depreciation.

Invariants enforced:
    - book_value == acquisition_cost - accumulated_depreciation.
    - Accumulated depreciation is monotonically non-decreasing and capped
      at acquisition_cost - residual_value.
    - Disposed assets never change again.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import positive_money, round_money, to_money
from treasury_kernel.domain.classification import classify_asset
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.depreciation import DepreciationTerms
from treasury_kernel.domain.postings import PostingRequest, TargetRef
from treasury_kernel.domain.settings import LedgerSettings
from treasury_kernel.domain.values import AssetStatus, DepreciationMethod, EventKind
from treasury_kernel.exceptions import AssetDisposedError, AssetNotFoundError, ValidationError
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.asset import AmortizedAsset
from treasury_kernel.services.base import BaseService
from treasury_kernel.services.event_log import EventLog

logger = get_logger("services.asset")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class AssetAcquisition:
    name: str
    acquisition_cost: Decimal
    acquisition_date: date
    useful_life_months: int
    residual_value: Decimal = _ZERO
    method: DepreciationMethod = DepreciationMethod.STRAIGHT_LINE
    category: str | None = None
    serial_number: str | None = None
    funding_account_id: UUID | None = None


@dataclass(frozen=True)
class DisposalResult:
    asset_id: UUID
    disposal_date: date
    book_value: Decimal
    proceeds: Decimal
    gain_loss: Decimal
    proceeds_event_id: UUID | None

    @property
    def is_gain(self) -> bool:
        return self.gain_loss > _ZERO


class AssetService(BaseService):
    def __init__(
        self,
        session: Session,
        event_log: EventLog,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
    ):
        super().__init__(session, clock)
        self.event_log = event_log
        self.settings = settings or LedgerSettings()

    def acquire(self, request: AssetAcquisition, actor_id: UUID) -> AmortizedAsset:
        """
        Register an asset.  With a funding account, the purchase is posted
        as an outflow from that account on the acquisition date.
        """
        if not request.name or not request.name.strip():
            raise ValidationError("asset name is required", field="name")
        try:
            method = DepreciationMethod(request.method)
        except ValueError as exc:
            raise ValidationError(f"unknown depreciation method {request.method!r}", field="method") from exc
        terms = DepreciationTerms(
            acquisition_cost=positive_money(request.acquisition_cost, "acquisition_cost"),
            acquisition_date=request.acquisition_date,
            useful_life_months=request.useful_life_months,
            residual_value=to_money(request.residual_value, "residual_value"),
            method=method,
            declining_factor=self.settings.declining_factor,
        )

        with self.session.begin_nested():
            asset = AmortizedAsset(
                name=request.name.strip(),
                category=request.category,
                serial_number=request.serial_number,
                acquisition_cost=terms.acquisition_cost,
                acquisition_date=terms.acquisition_date,
                useful_life_months=terms.useful_life_months,
                residual_value=terms.residual_value,
                method=method.value,
                declining_factor=terms.declining_factor,
                accumulated_depreciation=_ZERO,
                book_value=terms.acquisition_cost,
                status=AssetStatus.IN_SERVICE.value,
                created_by_id=actor_id,
            )
            self.session.add(asset)
            self.session.flush()

            if request.funding_account_id is not None:
                event = self.event_log.record(
                    PostingRequest(
                        target=TargetRef.account(request.funding_account_id),
                        kind=EventKind.OUTFLOW,
                        amount=terms.acquisition_cost,
                        event_date=terms.acquisition_date,
                        description=f"Acquisition of {asset.name}",
                        category="asset_acquisition",
                    ),
                    actor_id,
                )
                asset.funding_event_id = event.id
                self.session.flush()

        logger.info(
            "asset_acquired",
            extra={
                "asset_id": str(asset.id),
                "cost": terms.acquisition_cost,
                "method": method.value,
                "useful_life_months": terms.useful_life_months,
            },
        )
        return asset

    def _lock(self, asset_id: UUID) -> AmortizedAsset:
        asset = self.session.execute(
            select(AmortizedAsset)
            .where(AmortizedAsset.id == asset_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if asset is None:
            raise AssetNotFoundError(str(asset_id))
        return asset

    def revalue(self, asset_id: UUID, as_of: date | None = None) -> AmortizedAsset:
        """
        Bring the stored position up to the schedule as of ``as_of``
        (default: today).  Accumulated depreciation never moves backwards,
        so revaluing at an earlier date than the last one changes nothing.
        """
        asset = self._lock(asset_id)
        if asset.is_disposed:
            raise AssetDisposedError(str(asset_id))
        self._revalue_locked(asset, as_of or self.clock.today())
        return asset

    def revalue_all(self, as_of: date | None = None) -> int:
        """Revalue every asset still in service; returns how many changed."""
        as_of = as_of or self.clock.today()
        ids = self.session.execute(
            select(AmortizedAsset.id)
            .where(AmortizedAsset.status != AssetStatus.DISPOSED.value)
            .order_by(AmortizedAsset.id)
        ).scalars().all()
        changed = 0
        for asset_id in ids:
            asset = self._lock(asset_id)
            if self._revalue_locked(asset, as_of):
                changed += 1
        logger.info("assets_revalued", extra={"as_of": as_of, "count": len(ids), "changed": changed})
        return changed

    def _revalue_locked(self, asset: AmortizedAsset, as_of: date) -> bool:
        scheduled = DepreciationTerms.from_asset(asset).accumulated_as_of(as_of)
        if scheduled <= asset.accumulated_depreciation:
            return False
        asset.accumulated_depreciation = scheduled
        asset.book_value = asset.acquisition_cost - scheduled
        asset.status = classify_asset(asset.book_value, asset.residual_value, disposed=False).value
        asset.last_revalued_on = as_of
        self.session.flush()
        logger.debug(
            "asset_revalued",
            extra={
                "asset_id": str(asset.id),
                "as_of": as_of,
                "accumulated_depreciation": scheduled,
                "book_value": asset.book_value,
            },
        )
        return True

    def dispose(
        self,
        asset_id: UUID,
        proceeds: Decimal | int | str,
        disposal_date: date,
        actor_id: UUID,
        reason: str | None = None,
        proceeds_account_id: UUID | None = None,
    ) -> DisposalResult:
        """
        Dispose of an asset: revalue to the disposal date, record
        gain/loss = proceeds - book value, and freeze it.  Positive proceeds
        can be posted as an inflow to ``proceeds_account_id``.

        Raises:
            AssetNotFoundError, AssetDisposedError,
            ValidationError (negative proceeds, date before acquisition).
        """
        amount = to_money(proceeds, "proceeds")
        if amount < _ZERO:
            raise ValidationError("proceeds must not be negative", field="proceeds")
        if not isinstance(disposal_date, date) or isinstance(disposal_date, datetime):
            raise ValidationError("disposal_date must be a date", field="disposal_date")

        with self.session.begin_nested():
            asset = self._lock(asset_id)
            if asset.is_disposed:
                raise AssetDisposedError(str(asset_id))
            if disposal_date < asset.acquisition_date:
                raise ValidationError("disposal date precedes acquisition", field="disposal_date")

            self._revalue_locked(asset, disposal_date)
            book_value = asset.book_value
            gain_loss = round_money(amount - book_value)

            proceeds_event_id = None
            if proceeds_account_id is not None and amount > _ZERO:
                event = self.event_log.record(
                    PostingRequest(
                        target=TargetRef.account(proceeds_account_id),
                        kind=EventKind.INFLOW,
                        amount=amount,
                        event_date=disposal_date,
                        description=f"Disposal of {asset.name}",
                        category="asset_disposal",
                    ),
                    actor_id,
                )
                proceeds_event_id = event.id

            asset.disposal_date = disposal_date
            asset.disposal_proceeds = amount
            asset.disposal_gain_loss = gain_loss
            asset.disposal_reason = reason
            asset.disposal_event_id = proceeds_event_id
            asset.status = AssetStatus.DISPOSED.value
            asset.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "asset_disposed",
            extra={
                "asset_id": str(asset_id),
                "book_value": book_value,
                "proceeds": amount,
                "gain_loss": gain_loss,
            },
        )
        return DisposalResult(
            asset_id=asset.id,
            disposal_date=disposal_date,
            book_value=book_value,
            proceeds=amount,
            gain_loss=gain_loss,
            proceeds_event_id=proceeds_event_id,
        )
