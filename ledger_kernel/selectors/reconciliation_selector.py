"""
Module: ledger_kernel.selectors.reconciliation_selector
Responsibility: Lookups for bank accounts, their clearable items and their
    reconciliation sessions, scoped by tenant.
Architecture position: Kernel > Selectors.  Read-only apart from the row
    locks requested with ``for_update``.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import or_, select

from ledger_kernel.domain.dtos import ClearableItemType, ReconciliationStatus
from ledger_kernel.exceptions import (
    BankAccountNotFoundError,
    ClearableItemNotFoundError,
    ReconciliationNotFoundError,
)
from ledger_kernel.models.banking import BankAccount, BankTransaction, Payment
from ledger_kernel.models.reconciliation import Reconciliation
from ledger_kernel.selectors.base import BaseSelector

ITEM_MODELS = {
    ClearableItemType.PAYMENT: Payment,
    ClearableItemType.BANK_TXN: BankTransaction,
}


def item_date(item: Payment | BankTransaction) -> date:
    if isinstance(item, Payment):
        return item.payment_date
    return item.transaction_date


class ReconciliationSelector(BaseSelector[Reconciliation]):
    """Tenant-scoped reads used by the banking and reconciliation services."""

    def bank_account(
        self,
        tenant_id: UUID,
        bank_account_id: UUID,
        for_update: bool = False,
    ) -> BankAccount:
        account = self.session.get(
            BankAccount, bank_account_id, with_for_update=True if for_update else None
        )
        if account is None or account.tenant_id != tenant_id:
            raise BankAccountNotFoundError(str(bank_account_id))
        return account

    def list_bank_accounts(self, tenant_id: UUID) -> list[BankAccount]:
        return list(
            self.session.execute(
                select(BankAccount)
                .where(BankAccount.tenant_id == tenant_id)
                .order_by(BankAccount.name)
            ).scalars()
        )

    def session_by_id(
        self,
        tenant_id: UUID,
        reconciliation_id: UUID,
        for_update: bool = False,
    ) -> Reconciliation:
        stmt = select(Reconciliation).where(
            Reconciliation.id == reconciliation_id,
            Reconciliation.tenant_id == tenant_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        reconciliation = self.session.execute(stmt).scalar_one_or_none()
        if reconciliation is None:
            raise ReconciliationNotFoundError(str(reconciliation_id))
        return reconciliation

    def sessions_for(self, tenant_id: UUID, bank_account_id: UUID) -> list[Reconciliation]:
        """All sessions of a bank account, newest statement first."""
        return list(
            self.session.execute(
                select(Reconciliation)
                .where(
                    Reconciliation.tenant_id == tenant_id,
                    Reconciliation.bank_account_id == bank_account_id,
                )
                .order_by(Reconciliation.statement_date.desc())
            ).scalars()
        )

    def open_session(self, bank_account_id: UUID) -> Reconciliation | None:
        return self.session.execute(
            select(Reconciliation).where(
                Reconciliation.bank_account_id == bank_account_id,
                Reconciliation.status == ReconciliationStatus.IN_PROGRESS.value,
            )
        ).scalars().first()

    def session_for_statement(self, bank_account_id: UUID, statement_date: date) -> Reconciliation | None:
        return self.session.execute(
            select(Reconciliation).where(
                Reconciliation.bank_account_id == bank_account_id,
                Reconciliation.statement_date == statement_date,
            )
        ).scalar_one_or_none()

    def item(
        self,
        tenant_id: UUID,
        item_type: ClearableItemType,
        item_id: UUID,
        bank_account_id: UUID | None = None,
    ) -> Payment | BankTransaction:
        """
        Load a payment or bank transaction.

        With ``bank_account_id`` the item must also belong to that account.
        """
        item_type = ClearableItemType(item_type)
        item = self.session.get(ITEM_MODELS[item_type], item_id)
        if item is None or item.tenant_id != tenant_id:
            raise ClearableItemNotFoundError(item_type.value, str(item_id))
        if bank_account_id is not None and item.bank_account_id != bank_account_id:
            raise ClearableItemNotFoundError(item_type.value, str(item_id))
        return item

    def items_for_statement(
        self,
        reconciliation: Reconciliation,
    ) -> tuple[list[Payment], list[BankTransaction]]:
        """
        Items a session can see: dated on or before the statement date and
        not locked, plus whatever the session itself has cleared.
        """
        payment_ids = list(reconciliation.cleared_payment_ids)
        txn_ids = list(reconciliation.cleared_transaction_ids)

        payments = self.session.execute(
            select(Payment)
            .where(
                Payment.bank_account_id == reconciliation.bank_account_id,
                or_(
                    (Payment.payment_date <= reconciliation.statement_date)
                    & Payment.is_locked.is_(False),
                    Payment.id.in_(payment_ids),
                ),
            )
            .order_by(Payment.payment_date, Payment.id)
        ).scalars().all()

        bank_txns = self.session.execute(
            select(BankTransaction)
            .where(
                BankTransaction.bank_account_id == reconciliation.bank_account_id,
                or_(
                    (BankTransaction.transaction_date <= reconciliation.statement_date)
                    & BankTransaction.is_locked.is_(False),
                    BankTransaction.id.in_(txn_ids),
                ),
            )
            .order_by(BankTransaction.transaction_date, BankTransaction.id)
        ).scalars().all()

        return list(payments), list(bank_txns)
