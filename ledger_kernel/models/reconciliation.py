"""
Module: ledger_kernel.models.reconciliation
Responsibility: ORM model for a bank reconciliation session.
Architecture position: Kernel > Models.

Invariants enforced:
    - One reconciliation per (bank_account_id, statement_date).
    - At most one IN_PROGRESS reconciliation per bank account (partial
      unique index).
    - Cleared items are stored as two id-set columns (book side and bank
      side) rather than join rows; clearing is boolean per item per session.
    - IN_PROGRESS -> FINALIZED is the only transition.  A FINALIZED row is
      immutable (db/immutability.py).
    - version is a mapper version counter so concurrent toggles against the
      same session cannot silently overwrite each other's id sets.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.dtos import ClearableItemType, ReconciliationStatus
from ledger_kernel.models.banking import BankAccount

_OPEN_STATUS = f"status = '{ReconciliationStatus.IN_PROGRESS.value}'"


class Reconciliation(TrackedBase):
    """
    A reconciliation of one bank account against one statement.

    Contract:
        statement_balance is supplied by the caller; opening_balance is
        carried from the bank account when the session starts.  The gap is
        never stored; it is recomputed from the cleared id sets on every read.
    """

    __tablename__ = "reconciliations"

    __table_args__ = (
        UniqueConstraint("bank_account_id", "statement_date", name="uq_reconciliation_statement"),
        Index("idx_reconciliation_bank_status", "bank_account_id", "status"),
        Index(
            "uq_reconciliation_one_open",
            "bank_account_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS),
            sqlite_where=text(_OPEN_STATUS),
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bank_accounts.id"),
        nullable=False,
    )

    statement_date: Mapped[date] = mapped_column(nullable=False)

    statement_balance: Mapped[Decimal] = mapped_column(nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[ReconciliationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ReconciliationStatus.IN_PROGRESS,
    )

    # Book-side Payment ids (strings)
    cleared_payment_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Bank-side BankTransaction ids (strings)
    cleared_transaction_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)

    finalized_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    bank_account: Mapped[BankAccount] = relationship()

    def __repr__(self) -> str:
        return f"<Reconciliation {self.statement_date} [{self.status}]>"

    @property
    def is_finalized(self) -> bool:
        return self.status == ReconciliationStatus.FINALIZED

    def cleared_ids(self, item_type: ClearableItemType) -> list[str]:
        if ClearableItemType(item_type) is ClearableItemType.PAYMENT:
            return self.cleared_payment_ids
        return self.cleared_transaction_ids

    def set_cleared_ids(self, item_type: ClearableItemType, ids: list[str]) -> None:
        # JSON columns are not mutation-tracked; always assign a new list.
        if ClearableItemType(item_type) is ClearableItemType.PAYMENT:
            self.cleared_payment_ids = sorted(ids)
        else:
            self.cleared_transaction_ids = sorted(ids)

    def is_cleared(self, item_type: ClearableItemType, item_id: UUID | str) -> bool:
        return str(item_id) in self.cleared_ids(item_type)
