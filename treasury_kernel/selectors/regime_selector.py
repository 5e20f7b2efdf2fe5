"""
Module: treasury_kernel.selectors.regime_selector
Responsibility: Reporting-regime assessment for a period: the period's
    turnover classified against three ascending cutoffs.
Architecture position: Kernel > Selectors.  Read-only.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from treasury_kernel.domain.classification import (
    DEFAULT_REGIME_THRESHOLDS,
    RegimeThresholds,
    classify_regime,
)
from treasury_kernel.domain.values import Regime
from treasury_kernel.logging_config import get_logger
from treasury_kernel.selectors.base import BaseSelector
from treasury_kernel.selectors.event_selector import EventSelector

logger = get_logger("selectors.regime")


@dataclass(frozen=True)
class RegimeAssessment:
    start: date
    end: date
    turnover: Decimal
    regime: Regime
    thresholds: RegimeThresholds


class RegimeSelector(BaseSelector):
    def __init__(self, session: Session, thresholds: RegimeThresholds | None = None):
        super().__init__(session)
        self.thresholds = thresholds or DEFAULT_REGIME_THRESHOLDS
        self._events = EventSelector(session)

    def regime_for_period(
        self,
        start: date,
        end: date,
        thresholds: RegimeThresholds | None = None,
    ) -> RegimeAssessment:
        thresholds = thresholds or self.thresholds
        turnover = self._events.turnover(start, end)
        regime = classify_regime(turnover, thresholds)
        logger.debug(
            "regime_assessed",
            extra={"start": start, "end": end, "turnover": turnover, "regime": regime.value},
        )
        return RegimeAssessment(
            start=start,
            end=end,
            turnover=turnover,
            regime=regime,
            thresholds=thresholds,
        )
