"""
ledger_services.banking_service
===============================

Responsibility:
    Bank accounts and the two item collections reconciliation works on:
    book-side payments (posted to the ledger as they are recorded) and
    bank-side feed rows (normalized statement lines, deduplicated by the
    importer's external id).

Architecture:
    Services layer.  Posting goes through LedgerWriter; this facade owns the
    unit of work (commit on success, rollback and re-raise on failure).

Invariants enforced:
    - A bank account is bound to one ASSET account of the same tenant.
    - Payment and feed amounts are positive Decimals; direction gives sign.
    - A payment and its ledger transaction are written together.
    - Feed rows are unique per (bank account, external id); re-importing the
      same row is a no-op.
    - A feed row cannot be edited or deleted while it is cleared in an open
      reconciliation or once a finalized reconciliation locked it.
    - A bank line carrying a posted adjustment is never edited or deleted;
      the adjustment is corrected with a reversing entry.
    - Foreign-currency bank accounts post at a caller-supplied exchange
      rate; base-currency accounts post at rate 1.

Failure modes:
    - BankAccountNotFoundError / AccountNotFoundError for unknown ids.
    - ValidationError for a non-ASSET GL account or inactive bank account.
    - InvalidAmountError for non-positive or float amounts.
    - ItemLockedError / ItemClearedInSessionError / ItemPostedError on
      guarded feed edits.
    - MissingExchangeRateError when a foreign-currency posting has no rate.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.dtos import (
    AccountType,
    BankTransactionSource,
    ClearableItemType,
    ItemDirection,
    LineSpec,
    TransactionMetadata,
    TransactionType,
)
from ledger_kernel.exceptions import (
    InvalidAmountError,
    ItemClearedInSessionError,
    ItemLockedError,
    ItemPostedError,
    MissingExchangeRateError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.banking import BankAccount, BankTransaction, Payment
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.selectors.reconciliation_selector import ReconciliationSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_writer import LedgerWriter
from ledger_kernel.services.retry_service import run_with_retry

logger = get_logger("services.banking")

T = TypeVar("T")

_EDITABLE_FEED_FIELDS = frozenset(
    {"transaction_date", "amount", "direction", "description", "reference", "payee_name"}
)


@dataclass(frozen=True)
class FeedRow:
    """One normalized bank-feed line as produced by a statement importer."""

    external_id: str
    transaction_date: date
    amount: Decimal
    direction: ItemDirection
    description: str | None = None
    reference: str | None = None
    payee_name: str | None = None


def _require_positive(field: str, value: object) -> None:
    if not isinstance(value, Decimal) or value <= 0:
        raise InvalidAmountError(field, value)


def bank_exchange_rate(
    bank_account: BankAccount,
    base_currency: str,
    exchange_rate: Decimal | None = None,
) -> Decimal:
    """
    Rate converting the bank account's currency into the base currency.

    Base-currency accounts default to 1.  Foreign-currency accounts have no
    implicit rate; the caller supplies the rate in force on the posting date.
    """
    if exchange_rate is None:
        if bank_account.currency != base_currency:
            raise MissingExchangeRateError(bank_account.currency, base_currency)
        return Decimal("1")
    _require_positive("exchange_rate", exchange_rate)
    return exchange_rate


class BankingService:
    """
    Bank accounts, payments and feed rows.

    Contract:
        Write methods commit before returning or roll back and re-raise.
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
        self._selector = ReconciliationSelector(session)
        self._ledger = LedgerSelector(session)

    def _unit_of_work(self, operation: str, work: Callable[[int], T]) -> T:
        return run_with_retry(
            self._session,
            operation,
            work,
            max_attempts=self._config.posting.max_retry_attempts,
        )

    # =========================================================================
    # Bank accounts
    # =========================================================================

    def create_bank_account(
        self,
        tenant_id: UUID,
        name: str,
        gl_account_id: UUID,
        actor_id: UUID,
        currency: str | None = None,
        opening_balance: Decimal = Decimal("0"),
        account_number: str | None = None,
    ) -> BankAccount:
        """
        Register a bank account against an ASSET account of the chart.

        ``opening_balance`` is the balance before the first statement the
        ledger reconciles; it seeds the first session's opening balance.
        """
        if not isinstance(opening_balance, Decimal):
            raise InvalidAmountError("opening_balance", opening_balance)

        def work(attempt: int) -> BankAccount:
            gl_account = self._registry.get_account(tenant_id, gl_account_id)
            if AccountType(gl_account.account_type) is not AccountType.ASSET:
                raise ValidationError(
                    f"Bank account GL account {gl_account.code} must be an asset account"
                )
            bank_account = BankAccount(
                tenant_id=tenant_id,
                name=name,
                account_number=account_number,
                currency=CurrencyRegistry.validate(currency or gl_account.currency),
                gl_account_id=gl_account.id,
                opening_balance=opening_balance,
                is_active=True,
                created_by_id=actor_id,
            )
            self._session.add(bank_account)
            self._session.flush()
            logger.info(
                "bank_account_created",
                extra={
                    "bank_account_id": str(bank_account.id),
                    "gl_account_code": gl_account.code,
                    "currency": bank_account.currency,
                },
            )
            return bank_account

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work("create_bank_account", work)

    def get_bank_account(self, tenant_id: UUID, bank_account_id: UUID) -> BankAccount:
        return self._selector.bank_account(tenant_id, bank_account_id)

    def list_bank_accounts(self, tenant_id: UUID) -> list[BankAccount]:
        return self._selector.list_bank_accounts(tenant_id)

    def book_balance(self, tenant_id: UUID, bank_account_id: UUID, as_of: date | None = None) -> Decimal:
        """Ledger balance of the bank account's GL account, in base currency."""
        bank_account = self._selector.bank_account(tenant_id, bank_account_id)
        return self._ledger.account_balance(tenant_id, bank_account.gl_account_id, as_of)

    # =========================================================================
    # Book side
    # =========================================================================

    def record_payment(
        self,
        tenant_id: UUID,
        bank_account_id: UUID,
        payment_date: date,
        amount: Decimal,
        direction: ItemDirection | str,
        counter_account_id: UUID,
        actor_id: UUID,
        reference: str | None = None,
        payee_name: str | None = None,
        description: str | None = None,
        exchange_rate: Decimal | None = None,
    ) -> Payment:
        """
        Record money received into or paid out of a bank account.

        DEPOSIT posts Dr bank GL / Cr counter account; WITHDRAWAL posts
        Dr counter account / Cr bank GL.  The Payment row keeps a link to
        the posted transaction.

        ``amount`` is in the bank account's currency.  Accounts not held in
        the base currency need ``exchange_rate`` to value both lines.
        """
        _require_positive("amount", amount)
        direction = ItemDirection(direction)

        def work(attempt: int) -> Payment:
            bank_account = self._selector.bank_account(tenant_id, bank_account_id)
            if not bank_account.is_active:
                raise ValidationError(f"Bank account {bank_account.name} is inactive")
            rate = bank_exchange_rate(bank_account, self._config.base_currency, exchange_rate)
            currency = bank_account.currency

            if direction is ItemDirection.DEPOSIT:
                lines = [
                    LineSpec.debit(bank_account.gl_account_id, amount, currency, exchange_rate=rate),
                    LineSpec.credit(counter_account_id, amount, currency, exchange_rate=rate),
                ]
            else:
                lines = [
                    LineSpec.debit(counter_account_id, amount, currency, exchange_rate=rate),
                    LineSpec.credit(bank_account.gl_account_id, amount, currency, exchange_rate=rate),
                ]
            transaction = self._writer.create(
                tenant_id,
                lines,
                TransactionMetadata(
                    transaction_date=payment_date,
                    description=description or f"{direction.value.title()} {payee_name or ''}".strip(),
                    transaction_type=TransactionType.PAYMENT,
                    reference=reference,
                ),
                actor_id,
                recompute_balances=attempt > 1,
            )

            payment = Payment(
                tenant_id=tenant_id,
                bank_account_id=bank_account.id,
                payment_date=payment_date,
                amount=amount,
                direction=direction.value,
                reference=reference,
                payee_name=payee_name,
                description=description,
                transaction_id=transaction.id,
                is_locked=False,
                created_by_id=actor_id,
            )
            self._session.add(payment)
            self._session.flush()
            logger.info(
                "payment_recorded",
                extra={
                    "payment_id": str(payment.id),
                    "direction": direction.value,
                    "amount": str(amount),
                    "exchange_rate": str(rate),
                    "reference_number": transaction.reference_number,
                },
            )
            return payment

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work("record_payment", work)

    # =========================================================================
    # Bank side
    # =========================================================================

    def import_feed(
        self,
        tenant_id: UUID,
        bank_account_id: UUID,
        rows: Sequence[FeedRow],
        actor_id: UUID,
    ) -> list[BankTransaction]:
        """
        Store normalized feed rows; returns only the newly created ones.

        Rows whose external id is already stored for the bank account, or
        repeated within ``rows``, are skipped.
        """
        for row in rows:
            _require_positive("amount", row.amount)

        def work(attempt: int) -> list[BankTransaction]:
            bank_account = self._selector.bank_account(tenant_id, bank_account_id)
            known = set(
                self._session.execute(
                    select(BankTransaction.external_id).where(
                        BankTransaction.bank_account_id == bank_account.id,
                        BankTransaction.external_id.in_([r.external_id for r in rows]),
                    )
                ).scalars()
            )
            created: list[BankTransaction] = []
            for row in rows:
                if row.external_id in known:
                    continue
                known.add(row.external_id)
                item = BankTransaction(
                    tenant_id=tenant_id,
                    bank_account_id=bank_account.id,
                    transaction_date=row.transaction_date,
                    amount=row.amount,
                    direction=ItemDirection(row.direction).value,
                    description=row.description,
                    reference=row.reference,
                    payee_name=row.payee_name,
                    external_id=row.external_id,
                    source=BankTransactionSource.FEED.value,
                    is_locked=False,
                    created_by_id=actor_id,
                )
                self._session.add(item)
                created.append(item)
            self._session.flush()
            logger.info(
                "bank_feed_imported",
                extra={
                    "bank_account_id": str(bank_account.id),
                    "received": len(rows),
                    "created": len(created),
                    "skipped": len(rows) - len(created),
                },
            )
            return created

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work("import_feed", work)

    def _guard_feed_item(self, tenant_id: UUID, bank_transaction_id: UUID) -> BankTransaction:
        item = self._selector.item(tenant_id, ClearableItemType.BANK_TXN, bank_transaction_id)
        if item.is_locked:
            raise ItemLockedError("BankTransaction", str(item.id))
        if item.transaction_id is not None or item.source == BankTransactionSource.ADJUSTMENT:
            linked = str(item.transaction_id) if item.transaction_id is not None else None
            raise ItemPostedError("BankTransaction", str(item.id), linked)
        open_session = self._selector.open_session(item.bank_account_id)
        if open_session is not None and open_session.is_cleared(ClearableItemType.BANK_TXN, item.id):
            raise ItemClearedInSessionError("BankTransaction", str(item.id), str(open_session.id))
        return item

    def update_feed_item(
        self,
        tenant_id: UUID,
        bank_transaction_id: UUID,
        actor_id: UUID,
        **changes: object,
    ) -> BankTransaction:
        """
        Correct a feed row.

        Only transaction_date, amount, direction, description, reference and
        payee_name may be changed.
        """
        unknown = set(changes) - _EDITABLE_FEED_FIELDS
        if unknown:
            raise ValidationError(f"Feed fields cannot be edited: {sorted(unknown)}")
        if "amount" in changes:
            _require_positive("amount", changes["amount"])
        if "direction" in changes:
            changes["direction"] = ItemDirection(changes["direction"]).value

        def work(attempt: int) -> BankTransaction:
            item = self._guard_feed_item(tenant_id, bank_transaction_id)
            for field, value in changes.items():
                setattr(item, field, value)
            item.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "bank_feed_item_updated",
                extra={"bank_transaction_id": str(item.id), "fields": sorted(changes)},
            )
            return item

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work("update_feed_item", work)

    def delete_feed_item(self, tenant_id: UUID, bank_transaction_id: UUID) -> None:
        def work(attempt: int) -> None:
            item = self._guard_feed_item(tenant_id, bank_transaction_id)
            self._session.delete(item)
            self._session.flush()
            logger.info("bank_feed_item_deleted", extra={"bank_transaction_id": str(bank_transaction_id)})

        with LogContext.bind(tenant_id=tenant_id):
            self._unit_of_work("delete_feed_item", work)
