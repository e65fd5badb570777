"""
Module: ledger_kernel.models.account
Responsibility: ORM model for the per-tenant chart of accounts.
Architecture position: Kernel > Models.  Imports only from db/ and domain/.

Invariants enforced:
    - (tenant_id, code) is unique.
    - balance equals sum(debit base amounts) - sum(credit base amounts) of
      the account's POSTED ledger entries.  It is a running cache; the
      ledger entries remain the source of truth.
    - version is a mapper version counter, so two writers that both read
      the same balance cannot both write it back (StaleDataError).
    - Accounts with ledger activity are never deleted (db/immutability.py).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.dtos import AccountType


class Account(TrackedBase):
    """
    Chart of Accounts entry -- one node in the tenant's ledger hierarchy.

    Contract:
        A child account has the same account_type as its parent.  The
        balance column is only written through AccountRegistry.apply_balance_delta
        (called by the ledger writer) and AccountRegistry.recompute_balance.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        Index("idx_account_tenant_type", "tenant_id", "account_type"),
        Index("idx_account_parent", "parent_id"),
    )

    # Owning organization
    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Human-readable code, unique per tenant
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Financial statement classification
    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    # Parent account for hierarchical chart of accounts
    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    # Functional currency
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Running balance in the base currency (debits positive)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Whether the account accepts new postings
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Control accounts (receivables, bank GL, ...) reject manual journals
    allow_manual_journal: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    # Optimistic lock counter for balance updates
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    parent: Mapped["Account | None"] = relationship(
        remote_side="Account.id",
        back_populates="children",
    )

    children: Mapped[list["Account"]] = relationship(back_populates="parent")

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"
