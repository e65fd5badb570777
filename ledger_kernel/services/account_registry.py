"""
AccountRegistry -- the per-tenant chart of accounts.

Responsibility:
    Create, read, rename, deactivate and (when unused) delete accounts, and
    own the only write path to Account.balance.

Architecture position:
    Kernel > Services.  Flush-only; the caller owns the unit of work.

Invariants enforced:
    - Account code unique per tenant.
    - A child account has the same account_type as its parent, and the
      parent belongs to the same tenant.
    - Accounts with ledger activity or children are deactivated, never
      deleted (also enforced by db/immutability.py).
    - Balance writes go through apply_balance_delta / recompute_balance on
      rows locked with SELECT ... FOR UPDATE.

Failure modes:
    - DuplicateAccountCodeError, AccountTypeMismatchError (ValidationError).
    - AccountNotFoundError (NotFoundError) for ids outside the tenant.
    - AccountReferencedError (ImmutableStateError) on delete of a used account.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.dtos import AccountType
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    AccountReferencedError,
    AccountTypeMismatchError,
    DuplicateAccountCodeError,
    InvalidCurrencyError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")


class AccountRegistry(BaseService[Account]):
    """
    Chart-of-accounts service.

    Contract:
        Public read surface: get_account, get_account_by_code, list_accounts.
        Narrow write surface for the ledger writer: lock_accounts,
        apply_balance_delta, recompute_balance.
    """

    def __init__(self, session, base_currency: str = "USD"):
        super().__init__(session)
        self._base_currency = base_currency
        self._selector = LedgerSelector(session)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_account(self, tenant_id: UUID, account_id: UUID) -> Account:
        account = self.session.get(Account, account_id)
        if account is None or account.tenant_id != tenant_id:
            raise AccountNotFoundError(str(account_id))
        return account

    def get_account_by_code(self, tenant_id: UUID, code: str) -> Account:
        account = self.session.execute(
            select(Account).where(Account.tenant_id == tenant_id, Account.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def list_accounts(self, tenant_id: UUID, include_inactive: bool = False) -> list[Account]:
        stmt = select(Account).where(Account.tenant_id == tenant_id)
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return list(self.session.execute(stmt.order_by(Account.code)).scalars())

    # =========================================================================
    # Metadata writes
    # =========================================================================

    def create_account(
        self,
        tenant_id: UUID,
        code: str,
        name: str,
        account_type: AccountType | str,
        actor_id: UUID,
        parent_id: UUID | None = None,
        currency: str | None = None,
        allow_manual_journal: bool = True,
    ) -> Account:
        """
        Add an account to the tenant's chart.

        Raises:
            DuplicateAccountCodeError: code already used in the tenant.
            AccountNotFoundError: parent_id unknown in the tenant.
            AccountTypeMismatchError: parent has a different type.
        """
        account_type = AccountType(account_type)
        currency = currency or self._base_currency
        if not CurrencyRegistry.is_valid(currency):
            raise InvalidCurrencyError(currency)

        existing = self.session.execute(
            select(Account.id).where(Account.tenant_id == tenant_id, Account.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateAccountCodeError(str(tenant_id), code)

        if parent_id is not None:
            parent = self.get_account(tenant_id, parent_id)
            if AccountType(parent.account_type) is not account_type:
                raise AccountTypeMismatchError(account_type.value, AccountType(parent.account_type).value)

        account = Account(
            tenant_id=tenant_id,
            code=code,
            name=name,
            account_type=account_type.value,
            parent_id=parent_id,
            currency=CurrencyRegistry.validate(currency),
            balance=Decimal("0"),
            is_active=True,
            allow_manual_journal=allow_manual_journal,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "account_code": code,
                "account_type": account_type.value,
                "parent_id": str(parent_id) if parent_id else None,
            },
        )
        return account

    def rename_account(self, tenant_id: UUID, account_id: UUID, name: str, actor_id: UUID) -> Account:
        account = self.get_account(tenant_id, account_id)
        account.name = name
        account.updated_by_id = actor_id
        self.session.flush()
        return account

    def deactivate_account(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> Account:
        """Stop new postings to the account. History is untouched."""
        account = self.get_account(tenant_id, account_id)
        account.is_active = False
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info("account_deactivated", extra={"account_id": str(account_id)})
        return account

    def reactivate_account(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> Account:
        account = self.get_account(tenant_id, account_id)
        account.is_active = True
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info("account_reactivated", extra={"account_id": str(account_id)})
        return account

    def delete_account(self, tenant_id: UUID, account_id: UUID) -> None:
        """
        Hard-delete an account that was never used.

        Raises:
            AccountReferencedError: the account has ledger entries or children.
        """
        account = self.get_account(tenant_id, account_id)
        if self._selector.has_activity(account.id):
            raise AccountReferencedError(str(account_id))
        if account.children:
            raise AccountReferencedError(str(account_id), reason="account has child accounts")
        self.session.delete(account)
        self.session.flush()
        logger.info("account_deleted", extra={"account_id": str(account_id)})

    # =========================================================================
    # Balance write surface (ledger writer only)
    # =========================================================================

    def lock_accounts(self, tenant_id: UUID, account_ids: Iterable[UUID]) -> dict[UUID, Account]:
        """
        Load accounts with SELECT ... FOR UPDATE in id order.

        Locking in a fixed order keeps two concurrent posts over the same
        accounts from deadlocking.  Ids outside the tenant raise
        AccountNotFoundError.
        """
        wanted = sorted(set(account_ids), key=str)
        rows = self.session.execute(
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.id.in_(wanted))
            .order_by(Account.id)
            .with_for_update()
        ).scalars().all()
        found = {a.id: a for a in rows}
        for account_id in wanted:
            if account_id not in found:
                raise AccountNotFoundError(str(account_id))
        return found

    def apply_balance_delta(self, account: Account, delta: Decimal, actor_id: UUID) -> None:
        """Add a signed base-currency delta (debits positive) to the running balance."""
        account.balance = account.balance + delta
        account.updated_by_id = actor_id

    def recompute_balance(self, tenant_id: UUID, account_id: UUID, actor_id: UUID | None = None) -> Decimal:
        """Rebuild the running balance from posted ledger entries."""
        account = self.get_account(tenant_id, account_id)
        balance = self._selector.account_balance(tenant_id, account_id)
        if balance != account.balance:
            logger.info(
                "account_balance_recomputed",
                extra={
                    "account_id": str(account_id),
                    "cached_balance": str(account.balance),
                    "ledger_balance": str(balance),
                },
            )
            account.balance = balance
            if actor_id is not None:
                account.updated_by_id = actor_id
            self.session.flush()
        return balance
