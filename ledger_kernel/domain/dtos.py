"""
DTOs -- Pure domain enums and data transfer objects.

Responsibility:
    Defines the vocabulary shared by the ORM models, the pure engines and the
    services: entry sides, transaction lifecycle states, reconciliation item
    kinds, and the immutable inputs/outputs of the posting path (LineSpec,
    TransactionMetadata, BalanceCheck, AccountBalance, TrialBalance).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies; models import their enums from here.

Data flow:
    LineSpec + TransactionMetadata -> LedgerWriter -> Transaction/LedgerEntry rows
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.values import ExchangeRate, Money


class AccountType(str, Enum):
    """Account classification. Children share their parent's type."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class EntrySide(str, Enum):
    """Which side of the transaction a ledger entry is on."""

    DEBIT = "debit"
    CREDIT = "credit"

    def opposite(self) -> EntrySide:
        return EntrySide.CREDIT if self is EntrySide.DEBIT else EntrySide.DEBIT


class TransactionStatus(str, Enum):
    """
    Lifecycle: DRAFT -> POSTED.

    VOIDED is part of the stored status domain but no operation moves a
    POSTED transaction into it; corrections are new reversing transactions.
    """

    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


class TransactionType(str, Enum):
    """What produced the transaction."""

    JOURNAL = "journal"
    PAYMENT = "payment"
    REVERSAL = "reversal"
    ADJUSTMENT = "adjustment"


class ItemDirection(str, Enum):
    """Direction of money through a bank account."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class ClearableItemType(str, Enum):
    """Which source collection a clearable item comes from."""

    PAYMENT = "payment"
    BANK_TXN = "bank_txn"


class ReconciliationStatus(str, Enum):
    """IN_PROGRESS -> FINALIZED (terminal)."""

    IN_PROGRESS = "in_progress"
    FINALIZED = "finalized"


class AdjustmentType(str, Enum):
    """Statement-only items discovered during reconciliation."""

    FEE = "fee"
    INTEREST = "interest"
    WITHHOLDING_TAX = "withholding_tax"
    OTHER = "other"


class BankTransactionSource(str, Enum):
    FEED = "feed"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class LineSpec:
    """
    One requested ledger line.

    amount is in ``currency``; exchange_rate converts it into the
    organization's base currency and is stored with the line as supplied.
    """

    account_id: UUID
    side: EntrySide
    amount: Decimal
    currency: str
    exchange_rate: Decimal = Decimal("1")
    memo: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.side, EntrySide):
            object.__setattr__(self, "side", EntrySide(self.side))

    @classmethod
    def debit(
        cls,
        account_id: UUID,
        amount: Decimal,
        currency: str,
        exchange_rate: Decimal = Decimal("1"),
        memo: str | None = None,
    ) -> LineSpec:
        return cls(account_id, EntrySide.DEBIT, amount, currency, exchange_rate, memo)

    @classmethod
    def credit(
        cls,
        account_id: UUID,
        amount: Decimal,
        currency: str,
        exchange_rate: Decimal = Decimal("1"),
        memo: str | None = None,
    ) -> LineSpec:
        return cls(account_id, EntrySide.CREDIT, amount, currency, exchange_rate, memo)

    @property
    def money(self) -> Money:
        return Money.of(self.amount, self.currency)

    def base_amount(self, base_currency: str) -> Money:
        """Amount converted into the base currency, rounded to its minor unit."""
        rate = ExchangeRate(self.currency, base_currency, self.exchange_rate)
        return rate.convert(self.money).round()


@dataclass(frozen=True)
class TransactionMetadata:
    """Header fields for a transaction."""

    transaction_date: date
    description: str
    transaction_type: TransactionType = TransactionType.JOURNAL
    reference: str | None = None


@dataclass(frozen=True)
class BalanceCheck:
    """
    Result of summing a transaction's base amounts per side.

    difference is signed: debits minus credits.
    """

    total_debits: Decimal
    total_credits: Decimal
    currency: str
    tolerance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.total_debits - self.total_credits

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference) < self.tolerance


@dataclass(frozen=True)
class AccountBalance:
    """Read-surface view of an account: code, name, type, balance."""

    account_id: UUID
    code: str
    name: str
    account_type: AccountType
    balance: Decimal
    is_active: bool = True


@dataclass(frozen=True)
class TrialBalance:
    """Per-account balances with the debit/credit column totals."""

    tenant_id: UUID
    as_of: date | None
    rows: tuple[AccountBalance, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((r.balance for r in self.rows if r.balance > 0), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((-r.balance for r in self.rows if r.balance < 0), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits
