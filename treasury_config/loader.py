"""
Configuration Loader (``treasury_config.loader``).

Responsibility
--------------
Loads a treasury configuration YAML file and parses it into the typed
``treasury_config.schema`` dataclasses.  Callers go through
``treasury_config.get_active_config()``; nothing else reads configuration
files.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys never get silent defaults.
* Monetary and rate values are parsed into ``Decimal`` through ``str`` so
  a YAML float never leaks binary rounding into the ledger.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range or non-numeric values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from treasury_config.schema import (
    AssetConfig,
    LedgerConfig,
    ReferencePrefixConfig,
    RegimeConfig,
    TreasuryConfiguration,
)

_PREFIX_KEYS = ("inflow", "outflow", "transfer", "receivable", "payable")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{name} must be finite, got {value!r}")
    return result


def parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    currency = data["default_currency"]
    if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"ledger.default_currency must be a 3-letter code, got {currency!r}")
    allow_overdraft = data.get("allow_overdraft", False)
    if not isinstance(allow_overdraft, bool):
        raise ValueError(f"ledger.allow_overdraft must be true or false, got {allow_overdraft!r}")
    prefixes = data["reference_prefixes"]
    return LedgerConfig(
        default_currency=currency.upper(),
        allow_overdraft=allow_overdraft,
        reference_prefixes=ReferencePrefixConfig(**{key: str(prefixes[key]) for key in _PREFIX_KEYS}),
    )


def parse_regime(data: dict[str, Any]) -> RegimeConfig:
    raw = data["thresholds"]
    if not isinstance(raw, list) or len(raw) != 3:
        raise ValueError("regime.thresholds must be a list of exactly three cutoffs")
    first, second, third = (parse_decimal(v, "regime.thresholds") for v in raw)
    if first < 0 or not (first < second < third):
        raise ValueError(
            f"regime.thresholds must be non-negative and strictly ascending, got {raw!r}"
        )
    return RegimeConfig(thresholds=(first, second, third))


def parse_assets(data: dict[str, Any]) -> AssetConfig:
    factor = parse_decimal(data["declining_factor"], "assets.declining_factor")
    if factor <= 0:
        raise ValueError(f"assets.declining_factor must be positive, got {factor}")
    return AssetConfig(declining_factor=factor)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_configuration(data: dict[str, Any]) -> TreasuryConfiguration:
    """
    Build a TreasuryConfiguration from a parsed YAML document.

    Raises:
        KeyError: a required section or key is missing.
        ValueError: a value is out of range.
    """
    return TreasuryConfiguration(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        ledger=parse_ledger(data["ledger"]),
        regime=parse_regime(data["regime"]),
        assets=parse_assets(data["assets"]),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> TreasuryConfiguration:
    return parse_configuration(load_yaml_file(path))
