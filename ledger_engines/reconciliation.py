"""
ledger_engines.reconciliation -- Clearable items and the reconciliation gap.

Responsibility:
    Defines ClearableItem, the read projection over book-side payments and
    bank-side transactions, and computes the Gap between the book-derived
    balance and the statement balance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - compute_gap is a pure function of (opening balance, statement balance,
      cleared items): identical inputs give identical outputs, and clearing
      then un-clearing an item restores the original gap exactly.
    - Decimal arithmetic only.
    - An item is counted once even if it is passed twice.

Formula:
    calculated_balance = opening + sum(cleared deposits) - sum(cleared withdrawals)
    difference         = calculated_balance - statement_balance
    is_balanced        = |difference| < tolerance   (default 0.01)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.dtos import ClearableItemType, ItemDirection

DEFAULT_GAP_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ClearableItem:
    """
    A payment or bank transaction as seen by a reconciliation session.

    amount is always positive; direction gives the sign.
    """

    item_id: UUID
    item_type: ClearableItemType
    item_date: date
    amount: Decimal
    direction: ItemDirection
    description: str | None = None
    reference: str | None = None
    payee: str | None = None
    is_cleared: bool = False
    is_locked: bool = False

    @property
    def key(self) -> tuple[ClearableItemType, UUID]:
        return (self.item_type, self.item_id)

    @property
    def signed_amount(self) -> Decimal:
        if self.direction is ItemDirection.DEPOSIT:
            return self.amount
        return -self.amount


@dataclass(frozen=True)
class Gap:
    """Signed difference between the book-derived and statement balances."""

    opening_balance: Decimal
    statement_balance: Decimal
    cleared_deposits: Decimal
    cleared_withdrawals: Decimal
    cleared_count: int
    outstanding_deposits: Decimal = Decimal("0")
    outstanding_withdrawals: Decimal = Decimal("0")
    tolerance: Decimal = DEFAULT_GAP_TOLERANCE

    @property
    def calculated_balance(self) -> Decimal:
        return self.opening_balance + self.cleared_deposits - self.cleared_withdrawals

    @property
    def difference(self) -> Decimal:
        return self.calculated_balance - self.statement_balance

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference) < self.tolerance


def _sum_by_direction(items: Iterable[ClearableItem]) -> tuple[Decimal, Decimal, int]:
    unique = {item.key: item for item in items}
    deposits = sum(
        (i.amount for i in unique.values() if i.direction is ItemDirection.DEPOSIT),
        Decimal("0"),
    )
    withdrawals = sum(
        (i.amount for i in unique.values() if i.direction is ItemDirection.WITHDRAWAL),
        Decimal("0"),
    )
    return deposits, withdrawals, len(unique)


@traced_engine("reconciliation_gap", "1.0")
def compute_gap(
    opening_balance: Decimal,
    statement_balance: Decimal,
    cleared_items: Iterable[ClearableItem],
    outstanding_items: Iterable[ClearableItem] = (),
    tolerance: Decimal = DEFAULT_GAP_TOLERANCE,
) -> Gap:
    """
    Compute the reconciliation gap.

    Args:
        opening_balance: Balance carried from the last finalized statement.
        statement_balance: Closing balance on the bank statement.
        cleared_items: Items cleared in the session.
        outstanding_items: Uncleared items, reported for the operator only;
            they do not affect the difference.
        tolerance: Largest absolute difference still treated as zero.
    """
    deposits, withdrawals, count = _sum_by_direction(cleared_items)
    out_deposits, out_withdrawals, _ = _sum_by_direction(outstanding_items)
    return Gap(
        opening_balance=opening_balance,
        statement_balance=statement_balance,
        cleared_deposits=deposits,
        cleared_withdrawals=withdrawals,
        cleared_count=count,
        outstanding_deposits=out_deposits,
        outstanding_withdrawals=out_withdrawals,
        tolerance=tolerance,
    )
