"""
Module: ledger_kernel.models.transaction
Responsibility: ORM models for Transaction (the header) and LedgerEntry (the
    debit/credit lines).  A Transaction is the atomic unit of posting.
Architecture position: Kernel > Models.  Imports only from db/ and domain/.

Invariants enforced:
    - A POSTED transaction has sum(debit base_amount) == sum(credit base_amount)
      within the balance tolerance (checked by LedgerWriter before posting).
    - POSTED transactions and their entries are immutable
      (db/immutability.py listeners).
    - reversal_of_id is unique, so a transaction is reversed at most once.
    - (tenant_id, reference_number) is unique.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import Base, TrackedBase, UUIDString
from ledger_kernel.domain.dtos import (
    EntrySide,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.models.account import Account


class Transaction(TrackedBase):
    """
    A balanced set of ledger entries.

    Contract:
        Created as DRAFT (editable, deletable) or directly as POSTED.
        DRAFT -> POSTED is the only status transition performed by the
        kernel; corrections to POSTED transactions are new REVERSAL
        transactions that point back through reversal_of_id.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        UniqueConstraint("tenant_id", "reference_number", name="uq_transaction_reference_number"),
        UniqueConstraint("reversal_of_id", name="uq_transaction_reversal_of"),
        Index("idx_transaction_tenant_date", "tenant_id", "transaction_date"),
        Index("idx_transaction_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Accounting date
    transaction_date: Mapped[date] = mapped_column(nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(String(20), nullable=False)

    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        String(10),
        nullable=False,
        default=TransactionStatus.DRAFT,
    )

    # Sequential number allocated per tenant and month, e.g. JE-2024-03-0007
    reference_number: Mapped[str] = mapped_column(String(30), nullable=False)

    # Free-form external reference (cheque number, invoice number, ...)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Currency every base_amount is expressed in
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Back-reference from a reversal to the transaction it offsets
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
    )

    entries: Mapped[list["LedgerEntry"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="LedgerEntry.line_number",
        lazy="selectin",
    )

    reversal_of: Mapped["Transaction | None"] = relationship(
        remote_side="Transaction.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.reference_number} [{self.status}]>"

    @property
    def is_posted(self) -> bool:
        return self.status == TransactionStatus.POSTED

    @property
    def is_draft(self) -> bool:
        return self.status == TransactionStatus.DRAFT

    @property
    def total_debits(self) -> Decimal:
        """Sum of debit base amounts."""
        return sum(
            (e.base_amount for e in self.entries if e.side == EntrySide.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        """Sum of credit base amounts."""
        return sum(
            (e.base_amount for e in self.entries if e.side == EntrySide.CREDIT),
            Decimal("0"),
        )


class LedgerEntry(Base):
    """
    One debit or credit line of a transaction.

    amount is positive and in the entry currency; base_amount is amount
    times exchange_rate, rounded to the base currency's minor unit, and is
    what balances and account totals are computed from.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        Index("idx_entry_transaction", "transaction_id"),
        Index("idx_entry_account", "account_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    side: Mapped[EntrySide] = mapped_column(String(10), nullable=False)

    # Entry currency amount (always positive)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Rate captured at post time; never re-derived
    exchange_rate: Mapped[Decimal] = mapped_column(nullable=False)

    base_amount: Mapped[Decimal] = mapped_column(nullable=False)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction: Mapped[Transaction] = relationship(back_populates="entries")

    account: Mapped[Account] = relationship()

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.side} {self.amount} {self.currency}>"

    @property
    def signed_base_amount(self) -> Decimal:
        """Debits positive, credits negative."""
        if self.side == EntrySide.DEBIT:
            return self.base_amount
        return -self.base_amount
