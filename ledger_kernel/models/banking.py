"""
Module: ledger_kernel.models.banking
Responsibility: ORM models for bank accounts and the two collections that
    reconciliation clears against each other: book-side Payments and
    bank-side BankTransactions (normalized feed rows and adjustment items).
Architecture position: Kernel > Models.

Invariants enforced:
    - Every BankAccount is bound to exactly one GL account of the tenant.
    - Amounts are positive; direction carries the sign.
    - is_locked is set when a finalized reconciliation cleared the item and
      is never unset.
    - (bank_account_id, external_id) is unique, so feed rows are not
      imported twice.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.dtos import BankTransactionSource, ItemDirection
from ledger_kernel.models.account import Account


class BankAccount(TrackedBase):
    """A bank account and the GL account its activity posts to."""

    __tablename__ = "bank_accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "gl_account_id", name="uq_bank_account_gl"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    gl_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Statement balance of the last finalized reconciliation
    last_reconciled_balance: Mapped[Decimal | None] = mapped_column(nullable=True)

    last_reconciled_date: Mapped[date | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    gl_account: Mapped[Account] = relationship()

    def __repr__(self) -> str:
        return f"<BankAccount {self.name} ({self.currency})>"

    @property
    def carried_balance(self) -> Decimal:
        """Opening balance for the next reconciliation."""
        if self.last_reconciled_balance is not None:
            return self.last_reconciled_balance
        return self.opening_balance


# ----------------------------------------------------------------------------
# Book side
# ----------------------------------------------------------------------------


class Payment(TrackedBase):
    """A posted receipt or disbursement through a bank account."""

    __tablename__ = "bank_payments"

    __table_args__ = (
        Index("idx_payment_bank_date", "bank_account_id", "payment_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bank_accounts.id"),
        nullable=False,
    )

    payment_date: Mapped[date] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    direction: Mapped[ItemDirection] = mapped_column(String(20), nullable=False)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payee_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Ledger transaction that recorded the payment
    transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
    )

    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.direction} {self.amount} on {self.payment_date}>"


# ----------------------------------------------------------------------------
# Bank side
# ----------------------------------------------------------------------------


class BankTransaction(TrackedBase):
    """A bank-side statement line: a normalized feed row or an adjustment."""

    __tablename__ = "bank_transactions"

    __table_args__ = (
        UniqueConstraint("bank_account_id", "external_id", name="uq_bank_txn_external_id"),
        Index("idx_bank_txn_bank_date", "bank_account_id", "transaction_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bank_accounts.id"),
        nullable=False,
    )

    transaction_date: Mapped[date] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    direction: Mapped[ItemDirection] = mapped_column(String(20), nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payee_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Feed importer's identifier for deduplication
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    source: Mapped[BankTransactionSource] = mapped_column(
        String(20),
        nullable=False,
        default=BankTransactionSource.FEED,
    )

    # Adjustment transaction posted for this line, if any
    transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
    )

    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<BankTransaction {self.direction} {self.amount} on {self.transaction_date}>"
