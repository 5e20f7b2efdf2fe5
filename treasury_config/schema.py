"""
TreasuryConfiguration schema.

The typed form of a configuration YAML file.  The loader parses YAML into
these frozen dataclasses; ``bridges`` turns them into the kernel's
LedgerSettings.  Nothing here imports the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class ReferencePrefixConfig:
    inflow: str
    outflow: str
    transfer: str
    receivable: str
    payable: str


@dataclass(frozen=True)
class LedgerConfig:
    default_currency: str
    allow_overdraft: bool
    reference_prefixes: ReferencePrefixConfig


@dataclass(frozen=True)
class RegimeConfig:
    thresholds: tuple[Decimal, Decimal, Decimal]


@dataclass(frozen=True)
class AssetConfig:
    declining_factor: Decimal


@dataclass(frozen=True)
class TreasuryConfiguration:
    config_id: str
    version: int
    ledger: LedgerConfig
    regime: RegimeConfig
    assets: AssetConfig
    checksum: str = ""
