"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Account balances and trial balance recomputed from the
    ledger entries of POSTED transactions.
Architecture position: Kernel > Selectors.  Read-only.

Balances are summed in Python over Decimal values so the result is exact on
every backend, including those that store decimals as text.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select

from ledger_kernel.domain.dtos import AccountBalance, AccountType, TransactionStatus, TrialBalance
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import LedgerEntry, Transaction
from ledger_kernel.selectors.base import BaseSelector


class LedgerSelector(BaseSelector[LedgerEntry]):
    """Balance queries over posted ledger entries."""

    def _posted_entries(self, tenant_id: UUID, as_of: date | None = None):
        stmt = (
            select(LedgerEntry)
            .join(Transaction, LedgerEntry.transaction_id == Transaction.id)
            .where(
                Transaction.tenant_id == tenant_id,
                Transaction.status == TransactionStatus.POSTED.value,
            )
        )
        if as_of is not None:
            stmt = stmt.where(Transaction.transaction_date <= as_of)
        return stmt

    def account_balance(
        self,
        tenant_id: UUID,
        account_id: UUID,
        as_of: date | None = None,
    ) -> Decimal:
        """Sum(debit base amounts) - sum(credit base amounts) for one account."""
        stmt = self._posted_entries(tenant_id, as_of).where(LedgerEntry.account_id == account_id)
        entries = self.session.execute(stmt).scalars().all()
        return sum((e.signed_base_amount for e in entries), Decimal("0"))

    def balances_by_account(
        self,
        tenant_id: UUID,
        as_of: date | None = None,
    ) -> dict[UUID, Decimal]:
        totals: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
        for entry in self.session.execute(self._posted_entries(tenant_id, as_of)).scalars():
            totals[entry.account_id] += entry.signed_base_amount
        return dict(totals)

    def trial_balance(self, tenant_id: UUID, as_of: date | None = None) -> TrialBalance:
        """Every tenant account with its recomputed balance, ordered by code."""
        totals = self.balances_by_account(tenant_id, as_of)
        accounts = self.session.execute(
            select(Account).where(Account.tenant_id == tenant_id).order_by(Account.code)
        ).scalars()
        rows = tuple(
            AccountBalance(
                account_id=account.id,
                code=account.code,
                name=account.name,
                account_type=AccountType(account.account_type),
                balance=totals.get(account.id, Decimal("0")),
                is_active=account.is_active,
            )
            for account in accounts
        )
        return TrialBalance(tenant_id=tenant_id, as_of=as_of, rows=rows)

    def has_activity(self, account_id: UUID) -> bool:
        """True if any ledger entry (draft or posted) references the account."""
        return bool(
            self.session.execute(
                select(exists().where(LedgerEntry.account_id == account_id))
            ).scalar()
        )
