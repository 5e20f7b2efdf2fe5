"""
treasury_config -- single public entrypoint for treasury configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables for ledger policy.

Architecture position:
    Configuration -- sits above ``treasury_kernel``.  The kernel MUST NEVER
    import from ``treasury_config``; ``bridges`` translates a loaded
    configuration into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a ``config_loaded``
    log entry with the config id, version, source path and SHA-256
    checksum, tying postings back to the configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from treasury_config.loader import load_configuration
from treasury_config.schema import TreasuryConfiguration

_logger = logging.getLogger("treasury_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> TreasuryConfiguration:
    """
    Load and validate the configuration at ``path`` (default: the packaged
    ``defaults.yaml``).

    Does NOT cache: callers hold the returned configuration for as long as
    they need it.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = load_configuration(source)
    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "source": str(source),
            "checksum": config.checksum,
            "default_currency": config.ledger.default_currency,
        },
    )
    return config


__all__ = ["DEFAULT_CONFIG_PATH", "TreasuryConfiguration", "get_active_config"]
