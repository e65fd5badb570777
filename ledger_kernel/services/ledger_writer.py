"""
LedgerWriter -- validates and persists balanced transactions.

Responsibility:
    Turns LineSpecs plus TransactionMetadata into a Transaction with its
    LedgerEntries, enforces the posting rules, and applies balance deltas to
    the touched accounts when the transaction becomes POSTED.  Also edits,
    deletes and posts DRAFT transactions.

Architecture position:
    Kernel > Services.  Flush-only; ``ledger_services.LedgerService`` owns the
    unit of work and the retry loop.

Invariants enforced:
    - At least two lines, at least one DEBIT and one CREDIT.
    - Every amount and exchange rate is a positive Decimal; every currency
      is ISO 4217; base-currency lines carry exchange rate 1.
    - Lines touch at least two distinct accounts.
    - Every account exists in the tenant and is active (reversals may post
      to since-deactivated accounts so history can always be corrected).
    - JOURNAL transactions may not touch control accounts.
    - sum(debit base) - sum(credit base) is within the balance tolerance
      before a transaction becomes POSTED.
    - POSTED transactions are never edited or deleted here; the ORM
      listeners back this up.

Failure modes:
    - ValidationError subclasses for malformed input.
    - UnbalancedError carrying the signed difference.
    - PostedTransactionError for edits/deletes of POSTED transactions.
    - TransactionNotFoundError for ids outside the tenant.
"""

import time
from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.dtos import (
    BalanceCheck,
    EntrySide,
    LineSpec,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.exceptions import (
    AccountInactiveError,
    BaseCurrencyRateError,
    ControlAccountError,
    EmptyTransactionError,
    InvalidAmountError,
    InvalidCurrencyError,
    MissingSideError,
    PostedTransactionError,
    SingleAccountTransactionError,
    TransactionNotFoundError,
    UnbalancedError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import LedgerEntry, Transaction
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService

logger = get_logger("services.ledger_writer")

DEFAULT_BALANCE_TOLERANCE = Decimal("0.01")


class LedgerWriter(BaseService[Transaction]):
    """
    The ledger posting engine.

    Contract:
        ``create`` persists a DRAFT or POSTED transaction; ``replace_lines``,
        ``delete_draft`` and ``post_draft`` act on DRAFTs only.  Nothing is
        committed.

    Guarantees:
        - A transaction is POSTED only after the balance check passed.
        - Account balances change only when a transaction becomes POSTED,
          in the same flush as the status change.
        - base_amount = round(amount * exchange_rate) in the base currency;
          the caller-supplied rate is stored with the entry.

    Non-goals:
        - Does NOT look up exchange rates.
        - Does NOT commit or roll back.
    """

    def __init__(
        self,
        session,
        registry: AccountRegistry,
        clock: Clock | None = None,
        base_currency: str = "USD",
        balance_tolerance: Decimal = DEFAULT_BALANCE_TOLERANCE,
        reference_prefix: str = "JE",
    ):
        super().__init__(session)
        self._registry = registry
        self._clock = clock or SystemClock()
        self._base_currency = CurrencyRegistry.validate(base_currency)
        self._tolerance = balance_tolerance
        self._reference_prefix = reference_prefix

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_balance(self, lines: Sequence[LineSpec]) -> BalanceCheck:
        """Sum base amounts per side.  Pure apart from currency validation."""
        self._validate_amounts(lines)
        debits = Decimal("0")
        credits = Decimal("0")
        for line in lines:
            base = line.base_amount(self._base_currency).amount
            if line.side is EntrySide.DEBIT:
                debits += base
            else:
                credits += base
        return BalanceCheck(
            total_debits=debits,
            total_credits=credits,
            currency=self._base_currency,
            tolerance=self._tolerance,
        )

    def _validate_amounts(self, lines: Sequence[LineSpec]) -> None:
        for line in lines:
            if not isinstance(line.amount, Decimal) or line.amount <= 0:
                raise InvalidAmountError("amount", line.amount)
            if not isinstance(line.exchange_rate, Decimal) or line.exchange_rate <= 0:
                raise InvalidAmountError("exchange_rate", line.exchange_rate)
            if not CurrencyRegistry.is_valid(line.currency):
                raise InvalidCurrencyError(line.currency)
            if line.currency == self._base_currency and line.exchange_rate != Decimal("1"):
                raise BaseCurrencyRateError(line.currency, line.exchange_rate)

    def _validate_shape(
        self,
        tenant_id: UUID,
        lines: Sequence[LineSpec],
        transaction_type: TransactionType,
        allow_inactive: bool = False,
    ) -> dict[UUID, Account]:
        """Everything except the balance check.  Returns the locked accounts."""
        if len(lines) < 2:
            raise EmptyTransactionError(len(lines))

        self._validate_amounts(lines)

        sides = {line.side for line in lines}
        if EntrySide.DEBIT not in sides:
            raise MissingSideError(EntrySide.DEBIT.value)
        if EntrySide.CREDIT not in sides:
            raise MissingSideError(EntrySide.CREDIT.value)
        account_ids = {line.account_id for line in lines}
        if len(account_ids) == 1:
            raise SingleAccountTransactionError(str(next(iter(account_ids))))

        accounts = self._registry.lock_accounts(tenant_id, (l.account_id for l in lines))
        for account in accounts.values():
            if not account.is_active and not allow_inactive:
                raise AccountInactiveError(str(account.id))
            if transaction_type is TransactionType.JOURNAL and not account.allow_manual_journal:
                raise ControlAccountError(str(account.id), account.code)
        return accounts

    def _require_balanced(self, check: BalanceCheck, transaction_id: UUID | None = None) -> None:
        if check.is_balanced:
            logger.debug(
                "balance_validated",
                extra={
                    "total_debits": str(check.total_debits),
                    "total_credits": str(check.total_credits),
                },
            )
            return
        logger.warning(
            "unbalanced_transaction_rejected",
            extra={
                "transaction_id": str(transaction_id) if transaction_id else None,
                "total_debits": str(check.total_debits),
                "total_credits": str(check.total_credits),
                "difference": str(check.difference),
            },
        )
        raise UnbalancedError(check.total_debits, check.total_credits, check.currency)

    # =========================================================================
    # Create
    # =========================================================================

    def create(
        self,
        tenant_id: UUID,
        lines: Sequence[LineSpec],
        metadata: TransactionMetadata,
        actor_id: UUID,
        status: TransactionStatus = TransactionStatus.POSTED,
        reversal_of_id: UUID | None = None,
        recompute_balances: bool = False,
    ) -> Transaction:
        """
        Persist a new transaction as DRAFT or POSTED.

        Preconditions:
            - ``status`` is DRAFT or POSTED.
        Postconditions:
            - POSTED: entries flushed and every touched account balance
              updated in the same unit of work.
            - DRAFT: entries flushed; balances untouched.

        Args:
            recompute_balances: Rebuild touched balances from ledger entries
                instead of adding deltas.  Used on retry after a conflict.

        Raises:
            ValidationError, UnbalancedError, AccountNotFoundError.
        """
        status = TransactionStatus(status)
        if status is TransactionStatus.VOIDED:
            raise ValidationError("Transactions cannot be created as voided")
        transaction_type = TransactionType(metadata.transaction_type)

        t0 = time.monotonic()
        logger.info(
            "transaction_write_started",
            extra={
                "transaction_type": transaction_type.value,
                "status": status.value,
                "line_count": len(lines),
            },
        )

        accounts = self._validate_shape(
            tenant_id,
            lines,
            transaction_type,
            allow_inactive=transaction_type is TransactionType.REVERSAL,
        )
        if status is TransactionStatus.POSTED:
            self._require_balanced(self.validate_balance(lines))

        now = self._clock.now()
        transaction = Transaction(
            tenant_id=tenant_id,
            transaction_date=metadata.transaction_date,
            transaction_type=transaction_type.value,
            description=metadata.description,
            status=status.value,
            reference_number=self._next_reference_number(tenant_id, metadata.transaction_date),
            reference=metadata.reference,
            base_currency=self._base_currency,
            reversal_of_id=reversal_of_id,
            created_by_id=actor_id,
        )
        if status is TransactionStatus.POSTED:
            transaction.posted_at = now
        transaction.entries = self._build_entries(lines)
        self.session.add(transaction)
        self.session.flush()

        with LogContext.bind(transaction_id=transaction.id):
            if status is TransactionStatus.POSTED:
                self._apply_balances(transaction, accounts, actor_id, recompute_balances)

            logger.info(
                "transaction_write_completed",
                extra={
                    "reference_number": transaction.reference_number,
                    "status": status.value,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return transaction

    def _build_entries(self, lines: Sequence[LineSpec]) -> list[LedgerEntry]:
        return [
            LedgerEntry(
                account_id=line.account_id,
                side=line.side.value,
                amount=line.amount,
                currency=CurrencyRegistry.validate(line.currency),
                exchange_rate=line.exchange_rate,
                base_amount=line.base_amount(self._base_currency).amount,
                memo=line.memo,
                line_number=i,
            )
            for i, line in enumerate(lines, start=1)
        ]

    def _apply_balances(
        self,
        transaction: Transaction,
        accounts: dict[UUID, Account],
        actor_id: UUID,
        recompute: bool,
    ) -> None:
        deltas: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
        for entry in transaction.entries:
            deltas[entry.account_id] += entry.signed_base_amount

        for account_id, delta in deltas.items():
            if recompute:
                self._registry.recompute_balance(transaction.tenant_id, account_id, actor_id)
            else:
                self._registry.apply_balance_delta(accounts[account_id], delta, actor_id)
        self.session.flush()

        logger.info(
            "account_balances_updated",
            extra={
                "account_count": len(deltas),
                "recomputed": recompute,
            },
        )

    def _next_reference_number(self, tenant_id: UUID, on: date) -> str:
        """Next ``PREFIX-YYYY-MM-NNNN`` number for the tenant and month."""
        prefix = f"{self._reference_prefix}-{on.year:04d}-{on.month:02d}-"
        existing = self.session.execute(
            select(Transaction.reference_number).where(
                Transaction.tenant_id == tenant_id,
                Transaction.reference_number.like(f"{prefix}%"),
            )
        ).scalars()
        highest = max((int(ref[len(prefix):]) for ref in existing), default=0)
        return f"{prefix}{highest + 1:04d}"

    # =========================================================================
    # Drafts
    # =========================================================================

    def get_transaction(
        self,
        tenant_id: UUID,
        transaction_id: UUID,
        for_update: bool = False,
    ) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.tenant_id == tenant_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        transaction = self.session.execute(stmt).scalar_one_or_none()
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    def _get_draft(self, tenant_id: UUID, transaction_id: UUID, operation: str) -> Transaction:
        transaction = self.get_transaction(tenant_id, transaction_id, for_update=True)
        if not transaction.is_draft:
            logger.warning(
                "posted_transaction_edit_rejected",
                extra={"transaction_id": str(transaction_id), "operation": operation},
            )
            raise PostedTransactionError(str(transaction_id), operation)
        return transaction

    def replace_lines(
        self,
        tenant_id: UUID,
        transaction_id: UUID,
        lines: Sequence[LineSpec],
        actor_id: UUID,
        metadata: TransactionMetadata | None = None,
    ) -> Transaction:
        """Replace a DRAFT's lines wholesale, and optionally its header."""
        transaction = self._get_draft(tenant_id, transaction_id, "modified")
        transaction_type = TransactionType(
            metadata.transaction_type if metadata else transaction.transaction_type
        )
        self._validate_shape(tenant_id, lines, transaction_type)

        if metadata is not None:
            transaction.transaction_date = metadata.transaction_date
            transaction.description = metadata.description
            transaction.transaction_type = transaction_type.value
            transaction.reference = metadata.reference

        transaction.entries.clear()
        self.session.flush()
        transaction.entries = self._build_entries(lines)
        transaction.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "draft_lines_replaced",
            extra={"transaction_id": str(transaction.id), "line_count": len(lines)},
        )
        return transaction

    def delete_draft(self, tenant_id: UUID, transaction_id: UUID) -> None:
        transaction = self._get_draft(tenant_id, transaction_id, "deleted")
        self.session.delete(transaction)
        self.session.flush()
        logger.info("draft_deleted", extra={"transaction_id": str(transaction_id)})

    def post_draft(
        self,
        tenant_id: UUID,
        transaction_id: UUID,
        approver_id: UUID,
        recompute_balances: bool = False,
    ) -> Transaction:
        """
        DRAFT -> POSTED.

        The draft is re-validated against current account state (an account
        may have been deactivated since the draft was saved) before posting.
        """
        transaction = self._get_draft(tenant_id, transaction_id, "posted again")
        lines = [
            LineSpec(
                account_id=e.account_id,
                side=EntrySide(e.side),
                amount=e.amount,
                currency=e.currency,
                exchange_rate=e.exchange_rate,
                memo=e.memo,
            )
            for e in transaction.entries
        ]
        accounts = self._validate_shape(
            tenant_id, lines, TransactionType(transaction.transaction_type)
        )
        self._require_balanced(self.validate_balance(lines), transaction.id)

        now = self._clock.now()
        transaction.status = TransactionStatus.POSTED.value
        transaction.approved_by_id = approver_id
        transaction.approved_at = now
        transaction.posted_at = now
        transaction.updated_by_id = approver_id
        self.session.flush()

        with LogContext.bind(transaction_id=transaction.id):
            self._apply_balances(transaction, accounts, approver_id, recompute_balances)
            logger.info(
                "draft_posted",
                extra={"reference_number": transaction.reference_number},
            )
        return transaction
