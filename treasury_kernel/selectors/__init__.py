"""Selectors for the treasury kernel (read side)."""

from treasury_kernel.selectors.balance_selector import AccountBalanceView, BalanceSelector, CategoryTotal
from treasury_kernel.selectors.event_selector import EventFilter, EventSelector, EventView, PeriodStats
from treasury_kernel.selectors.history_selector import (
    BalanceHistory,
    BalancePoint,
    HistoricalReconstructor,
    PointInTimeTotal,
    WalkDirection,
)
from treasury_kernel.selectors.integrity_selector import Discrepancy, IntegrityReport, IntegritySelector
from treasury_kernel.selectors.obligation_selector import ObligationSelector, ObligationView
from treasury_kernel.selectors.regime_selector import RegimeAssessment, RegimeSelector

__all__ = [
    "AccountBalanceView",
    "BalanceHistory",
    "BalancePoint",
    "BalanceSelector",
    "CategoryTotal",
    "Discrepancy",
    "EventFilter",
    "EventSelector",
    "EventView",
    "HistoricalReconstructor",
    "IntegrityReport",
    "IntegritySelector",
    "ObligationSelector",
    "ObligationView",
    "PeriodStats",
    "PointInTimeTotal",
    "RegimeAssessment",
    "RegimeSelector",
    "WalkDirection",
]
