"""
ledger_config -- YAML-backed ledger configuration.

Responsibility:
    ``get_active_config()`` is the runtime entry point: it loads the file
    named by ``$LEDGER_CONFIG`` (or the shipped defaults) and emits one
    ``LEDGER_CONFIG_TRACE`` record with the configuration checksum.

Architecture position:
    Sits above ``ledger_kernel`` and below ``ledger_services``.  The kernel
    never imports from this package; services receive plain values.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import compute_checksum, load_config
from ledger_config.schema import DatabaseConfig, LedgerConfig, MatchingConfig, PostingConfig

_logger = logging.getLogger("ledger_kernel.config")


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """Load the active configuration and trace which one was used."""
    config = load_config(path)
    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "checksum": compute_checksum(config),
            "base_currency": config.base_currency,
            "max_retry_attempts": config.posting.max_retry_attempts,
            "min_confidence": config.matching.min_confidence,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "LedgerConfig",
    "MatchingConfig",
    "PostingConfig",
    "get_active_config",
    "load_config",
]
