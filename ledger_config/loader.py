"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a ledger YAML file and parses it into the frozen dataclasses in
``ledger_config.schema``.

Invariants enforced
-------------------
* Money-like values (``balance_tolerance``) are parsed to ``Decimal`` from
  their string form; no float intermediates survive parsing.
* ``base_currency`` must be a known ISO 4217 code.
* ``compute_checksum`` is deterministic for identical parsed content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing top-level sections  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import DatabaseConfig, LedgerConfig, MatchingConfig, PostingConfig
from ledger_kernel.domain.currency import CurrencyRegistry

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"

CONFIG_PATH_ENV = "LEDGER_CONFIG"
DATABASE_URL_ENV = "LEDGER_DATABASE_URL"

_REQUIRED_SECTIONS = ("base_currency", "posting", "matching", "database")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a Decimal from a YAML scalar via its string form."""
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field_name}: cannot parse decimal from {value!r}") from exc


def parse_posting(data: dict[str, Any]) -> PostingConfig:
    return PostingConfig(
        max_retry_attempts=int(data.get("max_retry_attempts", 3)),
        reference_prefix=str(data.get("reference_prefix", "JE")),
    )


def parse_matching(data: dict[str, Any]) -> MatchingConfig:
    return MatchingConfig(
        min_confidence=int(data.get("min_confidence", 80)),
        date_window_days=int(data.get("date_window_days", 3)),
        base_score=int(data.get("base_score", 70)),
        reference_weight=int(data.get("reference_weight", 20)),
        same_date_weight=int(data.get("same_date_weight", 10)),
        payee_weight=int(data.get("payee_weight", 10)),
    )


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(url=data["url"], echo=bool(data.get("echo", False)))


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a ``LedgerConfig`` from a dict.

    Raises:
        KeyError: a required section is missing.
        ValueError: a value fails validation.
    """
    for key in _REQUIRED_SECTIONS:
        if key not in data:
            raise KeyError(f"ledger config is missing required key '{key}'")

    return LedgerConfig(
        base_currency=CurrencyRegistry.validate(str(data["base_currency"])),
        balance_tolerance=parse_decimal(data.get("balance_tolerance", "0.01"), "balance_tolerance"),
        posting=parse_posting(data["posting"] or {}),
        matching=parse_matching(data["matching"] or {}),
        database=parse_database(data["database"]),
    )


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerConfig:
    """
    Load configuration from ``path``, ``$LEDGER_CONFIG`` or the shipped defaults.

    ``$LEDGER_DATABASE_URL``, when set, replaces ``database.url``.
    """
    environ = os.environ if environ is None else environ
    if path is None:
        path = environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH

    data = load_yaml_file(Path(path))
    override_url = environ.get(DATABASE_URL_ENV)
    if override_url:
        data = {**data, "database": {**(data.get("database") or {}), "url": override_url}}
    return parse_config(data)


def compute_checksum(config: LedgerConfig) -> str:
    """Deterministic SHA-256 over the parsed configuration."""
    canonical = json.dumps(_as_plain(config), sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _as_plain(value: Any) -> Any:
    if hasattr(value, "__dataclass_fields__"):
        return {name: _as_plain(getattr(value, name)) for name in value.__dataclass_fields__}
    if isinstance(value, Decimal):
        return str(value)
    return value
