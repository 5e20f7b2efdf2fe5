"""
Config -> Kernel Bridges.

Converts a TreasuryConfiguration into the kernel's LedgerSettings.  The
bridge lives here because the kernel must never import treasury_config.

Usage:
    from treasury_config import get_active_config
    from treasury_config.bridges import build_ledger_settings

    settings = build_ledger_settings(get_active_config())
"""

from __future__ import annotations

from treasury_config.schema import TreasuryConfiguration
from treasury_kernel.domain.classification import RegimeThresholds
from treasury_kernel.domain.settings import LedgerSettings, ReferencePrefixes


def build_regime_thresholds(config: TreasuryConfiguration) -> RegimeThresholds:
    first, second, third = config.regime.thresholds
    return RegimeThresholds(first=first, second=second, third=third)


def build_ledger_settings(config: TreasuryConfiguration) -> LedgerSettings:
    prefixes = config.ledger.reference_prefixes
    return LedgerSettings(
        default_currency=config.ledger.default_currency,
        prefixes=ReferencePrefixes(
            inflow=prefixes.inflow,
            outflow=prefixes.outflow,
            transfer=prefixes.transfer,
            receivable=prefixes.receivable,
            payable=prefixes.payable,
        ),
        regime_thresholds=build_regime_thresholds(config),
        declining_factor=config.assets.declining_factor,
        allow_overdraft=config.ledger.allow_overdraft,
    )
