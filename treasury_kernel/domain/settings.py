"""
Settings -- the kernel-side view of configuration.

The kernel never reads files.  ``treasury_config.bridges`` turns a loaded
YAML configuration into a LedgerSettings; tests construct one directly.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from treasury_kernel.domain.classification import DEFAULT_REGIME_THRESHOLDS, RegimeThresholds


@dataclass(frozen=True)
class ReferencePrefixes:
    """Prefixes for generated references ``{PREFIX}-{YYYYMM}-{NNNN}``."""

    inflow: str = "REC"
    outflow: str = "EXP"
    transfer: str = "TRF"
    receivable: str = "CR"
    payable: str = "DT"

    def __post_init__(self) -> None:
        for name in ("inflow", "outflow", "transfer", "receivable", "payable"):
            value = getattr(self, name)
            if not value or not value.isalnum() or len(value) > 10:
                raise ValueError(f"reference prefix '{name}' must be 1-10 alphanumerics, got {value!r}")


@dataclass(frozen=True)
class LedgerSettings:
    default_currency: str = "MGA"
    prefixes: ReferencePrefixes = field(default_factory=ReferencePrefixes)
    regime_thresholds: RegimeThresholds = DEFAULT_REGIME_THRESHOLDS
    declining_factor: Decimal = Decimal("2")
    allow_overdraft: bool = False
