"""
LedgerConfig schema.

Frozen dataclasses the loader parses ``ledger.yaml`` into.  Every field has
the value the shipped defaults file uses, so ``LedgerConfig()`` is a valid
configuration for tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class DatabaseConfig:
    """Where the ledger lives."""

    url: str = "sqlite:///:memory:"
    echo: bool = False


@dataclass(frozen=True)
class PostingConfig:
    """Posting engine knobs."""

    max_retry_attempts: int = 3
    reference_prefix: str = "JE"

    def __post_init__(self) -> None:
        if self.max_retry_attempts < 1:
            raise ValueError(
                f"max_retry_attempts must be at least 1, got {self.max_retry_attempts}"
            )
        if not self.reference_prefix:
            raise ValueError("reference_prefix must not be empty")


@dataclass(frozen=True)
class MatchingConfig:
    """Match suggestion scoring and auto-apply threshold."""

    min_confidence: int = 80
    date_window_days: int = 3
    base_score: int = 70
    reference_weight: int = 20
    same_date_weight: int = 10
    payee_weight: int = 10

    def __post_init__(self) -> None:
        if not 0 <= self.min_confidence <= 100:
            raise ValueError(f"min_confidence must be within 0..100, got {self.min_confidence}")
        if self.date_window_days < 0:
            raise ValueError(f"date_window_days must be >= 0, got {self.date_window_days}")


@dataclass(frozen=True)
class LedgerConfig:
    """Top-level configuration."""

    base_currency: str = "USD"
    balance_tolerance: Decimal = Decimal("0.01")
    posting: PostingConfig = field(default_factory=PostingConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def __post_init__(self) -> None:
        if isinstance(self.balance_tolerance, float):
            raise ValueError("balance_tolerance must be a Decimal or string, not float")
        if self.balance_tolerance <= 0:
            raise ValueError(f"balance_tolerance must be positive, got {self.balance_tolerance}")
