"""
ledger_services.ledger_service
==============================

Responsibility:
    Public entry point for the chart of accounts, the posting engine and the
    reversal engine.  Composes AccountRegistry, LedgerWriter,
    ReversalService and LedgerSelector over one session.

Architecture:
    Services layer.  Kernel services only flush; this facade owns the
    transaction boundary through ``run_with_retry`` (commit on success,
    rollback on failure, bounded retry on concurrency conflicts).

Invariants enforced:
    - Every write method is exactly one unit of work.
    - On a retry, touched account balances are rebuilt from ledger entries
      instead of re-applying deltas to values read by the failed attempt.
    - Money is Decimal; float amounts are rejected by the writer.

Usage::

    service = LedgerService(session, config, clock)
    txn = service.post_transaction(
        tenant_id,
        [LineSpec.debit(cash.id, Decimal("100.00"), "USD"),
         LineSpec.credit(revenue.id, Decimal("100.00"), "USD")],
        TransactionMetadata(date(2024, 1, 15), "Cash sale"),
        actor_id,
    )
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountType,
    BalanceCheck,
    LineSpec,
    TransactionMetadata,
    TransactionStatus,
    TrialBalance,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_writer import LedgerWriter
from ledger_kernel.services.retry_service import run_with_retry
from ledger_kernel.services.reversal_service import ReversalService

logger = get_logger("services.ledger")

T = TypeVar("T")


class LedgerService:
    """
    Chart of accounts, posting and reversal behind one transaction boundary.

    Contract:
        Write methods commit before returning or roll back and re-raise.
        Read methods never write.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or LedgerConfig()
        self._clock = clock or SystemClock()

        self._registry = AccountRegistry(session, base_currency=self._config.base_currency)
        self._writer = LedgerWriter(
            session,
            self._registry,
            clock=self._clock,
            base_currency=self._config.base_currency,
            balance_tolerance=self._config.balance_tolerance,
            reference_prefix=self._config.posting.reference_prefix,
        )
        self._reversals = ReversalService(session, self._writer, clock=self._clock)
        self._selector = LedgerSelector(session)

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    @property
    def writer(self) -> LedgerWriter:
        return self._writer

    def _unit_of_work(self, operation: str, work: Callable[[int], T]) -> T:
        return run_with_retry(
            self._session,
            operation,
            work,
            max_attempts=self._config.posting.max_retry_attempts,
        )

    # =========================================================================
    # Chart of accounts
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
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work(
                "create_account",
                lambda attempt: self._registry.create_account(
                    tenant_id,
                    code,
                    name,
                    account_type,
                    actor_id,
                    parent_id=parent_id,
                    currency=currency,
                    allow_manual_journal=allow_manual_journal,
                ),
            )

    def get_account(self, tenant_id: UUID, account_id: UUID) -> Account:
        return self._registry.get_account(tenant_id, account_id)

    def get_account_by_code(self, tenant_id: UUID, code: str) -> Account:
        return self._registry.get_account_by_code(tenant_id, code)

    def list_accounts(self, tenant_id: UUID, include_inactive: bool = False) -> list[Account]:
        return self._registry.list_accounts(tenant_id, include_inactive=include_inactive)

    def rename_account(self, tenant_id: UUID, account_id: UUID, name: str, actor_id: UUID) -> Account:
        return self._unit_of_work(
            "rename_account",
            lambda attempt: self._registry.rename_account(tenant_id, account_id, name, actor_id),
        )

    def deactivate_account(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> Account:
        return self._unit_of_work(
            "deactivate_account",
            lambda attempt: self._registry.deactivate_account(tenant_id, account_id, actor_id),
        )

    def reactivate_account(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> Account:
        return self._unit_of_work(
            "reactivate_account",
            lambda attempt: self._registry.reactivate_account(tenant_id, account_id, actor_id),
        )

    def delete_account(self, tenant_id: UUID, account_id: UUID) -> None:
        self._unit_of_work(
            "delete_account",
            lambda attempt: self._registry.delete_account(tenant_id, account_id),
        )

    def recompute_balance(self, tenant_id: UUID, account_id: UUID, actor_id: UUID | None = None) -> Decimal:
        return self._unit_of_work(
            "recompute_balance",
            lambda attempt: self._registry.recompute_balance(tenant_id, account_id, actor_id),
        )

    # =========================================================================
    # Posting
    # =========================================================================

    def validate_balance(self, lines: Sequence[LineSpec]) -> BalanceCheck:
        return self._writer.validate_balance(lines)

    def post_transaction(
        self,
        tenant_id: UUID,
        lines: Sequence[LineSpec],
        metadata: TransactionMetadata,
        actor_id: UUID,
    ) -> Transaction:
        """
        Validate, persist and post a balanced transaction.

        Raises:
            ValidationError: malformed lines or inactive/control accounts.
            UnbalancedError: debits and credits differ by 0.01 or more.
            ConflictError: concurrent updates exhausted the retry budget.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work(
                "post_transaction",
                lambda attempt: self._writer.create(
                    tenant_id,
                    lines,
                    metadata,
                    actor_id,
                    status=TransactionStatus.POSTED,
                    recompute_balances=attempt > 1,
                ),
            )

    def create_draft(
        self,
        tenant_id: UUID,
        lines: Sequence[LineSpec],
        metadata: TransactionMetadata,
        actor_id: UUID,
    ) -> Transaction:
        """Save a DRAFT.  Lines are shape-checked; balance is checked at post."""
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work(
                "create_draft",
                lambda attempt: self._writer.create(
                    tenant_id, lines, metadata, actor_id, status=TransactionStatus.DRAFT
                ),
            )

    def update_draft(
        self,
        tenant_id: UUID,
        transaction_id: UUID,
        lines: Sequence[LineSpec],
        actor_id: UUID,
        metadata: TransactionMetadata | None = None,
    ) -> Transaction:
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, transaction_id=transaction_id):
            return self._unit_of_work(
                "update_draft",
                lambda attempt: self._writer.replace_lines(
                    tenant_id, transaction_id, lines, actor_id, metadata=metadata
                ),
            )

    def delete_draft(self, tenant_id: UUID, transaction_id: UUID) -> None:
        with LogContext.bind(tenant_id=tenant_id, transaction_id=transaction_id):
            self._unit_of_work(
                "delete_draft",
                lambda attempt: self._writer.delete_draft(tenant_id, transaction_id),
            )

    def post_draft(self, tenant_id: UUID, transaction_id: UUID, approver_id: UUID) -> Transaction:
        with LogContext.bind(tenant_id=tenant_id, actor_id=approver_id, transaction_id=transaction_id):
            return self._unit_of_work(
                "post_draft",
                lambda attempt: self._writer.post_draft(
                    tenant_id, transaction_id, approver_id, recompute_balances=attempt > 1
                ),
            )

    def get_transaction(self, tenant_id: UUID, transaction_id: UUID) -> Transaction:
        return self._writer.get_transaction(tenant_id, transaction_id)

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_transaction(
        self,
        tenant_id: UUID,
        transaction_id: UUID,
        reason: str,
        actor_id: UUID,
        reversal_date: date | None = None,
    ) -> Transaction:
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work(
                "reverse_transaction",
                lambda attempt: self._reversals.reverse_transaction(
                    tenant_id,
                    transaction_id,
                    reason,
                    actor_id,
                    reversal_date=reversal_date,
                    recompute_balances=attempt > 1,
                ),
            )

    # =========================================================================
    # Reports
    # =========================================================================

    def account_balance(self, tenant_id: UUID, account_id: UUID, as_of: date | None = None) -> Decimal:
        """Balance recomputed from posted ledger entries."""
        self._registry.get_account(tenant_id, account_id)
        return self._selector.account_balance(tenant_id, account_id, as_of)

    def trial_balance(self, tenant_id: UUID, as_of: date | None = None) -> TrialBalance:
        return self._selector.trial_balance(tenant_id, as_of)
