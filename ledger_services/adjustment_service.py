"""
ledger_services.adjustment_service
==================================

Responsibility:
    Posts statement-only items found during reconciliation (bank fees,
    interest, withholding tax) to the ledger and clears the matching bank
    line in the open session, atomically.

Architecture:
    Services layer.  Posting goes through LedgerWriter as an ADJUSTMENT
    transaction; clearing goes through ClearingService.  Both happen in one
    unit of work run by ``run_with_retry``.

Posting rules:
    FEE, WITHHOLDING_TAX   Dr expense account    / Cr bank GL   (withdrawal)
    INTEREST               Dr bank GL            / Cr income account (deposit)
    OTHER                  by ``direction`` (default withdrawal)

Failure modes:
    - LockedSessionError if the session is FINALIZED.
    - ValidationError if ``bank_account_gl_id`` is not the session bank
      account's GL account, or equals the expense/income account.
    - MissingExchangeRateError for a foreign-currency bank account posted
      without a rate.
    - ItemMismatchError if an existing bank line differs in amount or
      direction, or already carries an adjustment.
    - Any posting error from LedgerWriter; nothing is written.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AdjustmentType,
    BankTransactionSource,
    ClearableItemType,
    ItemDirection,
    LineSpec,
    TransactionMetadata,
    TransactionType,
)
from ledger_kernel.exceptions import InvalidAmountError, ItemMismatchError, ValidationError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.banking import BankTransaction
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.selectors.reconciliation_selector import ReconciliationSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.clearing_service import ClearingService
from ledger_kernel.services.ledger_writer import LedgerWriter
from ledger_kernel.services.retry_service import run_with_retry
from ledger_services.banking_service import bank_exchange_rate

logger = get_logger("services.adjustment")

_DIRECTION_BY_TYPE = {
    AdjustmentType.FEE: ItemDirection.WITHDRAWAL,
    AdjustmentType.WITHHOLDING_TAX: ItemDirection.WITHDRAWAL,
    AdjustmentType.INTEREST: ItemDirection.DEPOSIT,
}


def adjustment_direction(
    adjustment_type: AdjustmentType,
    direction: ItemDirection | None = None,
) -> ItemDirection:
    """Money direction through the bank for an adjustment type."""
    if adjustment_type in _DIRECTION_BY_TYPE:
        return _DIRECTION_BY_TYPE[adjustment_type]
    return ItemDirection(direction) if direction is not None else ItemDirection.WITHDRAWAL


class AdjustmentPoster:
    """Posts reconciliation adjustments and clears their bank lines."""

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
        self._clearing = ClearingService(session, self._selector)

    def post_adjustment(
        self,
        tenant_id: UUID,
        session_id: UUID,
        adjustment_date: date,
        amount: Decimal,
        description: str,
        expense_or_income_account_id: UUID,
        bank_account_gl_id: UUID,
        actor_id: UUID,
        adjustment_type: AdjustmentType | str = AdjustmentType.FEE,
        bank_transaction_id: UUID | None = None,
        direction: ItemDirection | str | None = None,
        exchange_rate: Decimal | None = None,
    ) -> Transaction:
        """
        Post a two-line ADJUSTMENT transaction and clear its bank line.

        With ``bank_transaction_id`` the existing feed line is linked and
        cleared; otherwise a new bank line with source ADJUSTMENT is created.
        ``exchange_rate`` values a foreign-currency bank account's lines in
        the base currency and is required for such accounts.
        """
        if not isinstance(amount, Decimal) or amount <= 0:
            raise InvalidAmountError("amount", amount)
        adjustment_type = AdjustmentType(adjustment_type)
        money_direction = adjustment_direction(adjustment_type, direction)
        if expense_or_income_account_id == bank_account_gl_id:
            raise ValidationError(
                "The expense or income account of an adjustment must differ from "
                "the bank GL account"
            )

        def work(attempt: int) -> Transaction:
            reconciliation = self._clearing.lock_open_session(tenant_id, session_id)
            bank_account = reconciliation.bank_account
            if bank_account.gl_account_id != bank_account_gl_id:
                raise ValidationError(
                    f"Account {bank_account_gl_id} is not the GL account of bank "
                    f"account {bank_account.name}"
                )

            rate = bank_exchange_rate(bank_account, self._config.base_currency, exchange_rate)
            currency = bank_account.currency
            if money_direction is ItemDirection.WITHDRAWAL:
                lines = [
                    LineSpec.debit(
                        expense_or_income_account_id, amount, currency, exchange_rate=rate, memo=description
                    ),
                    LineSpec.credit(
                        bank_account_gl_id, amount, currency, exchange_rate=rate, memo=description
                    ),
                ]
            else:
                lines = [
                    LineSpec.debit(
                        bank_account_gl_id, amount, currency, exchange_rate=rate, memo=description
                    ),
                    LineSpec.credit(
                        expense_or_income_account_id, amount, currency, exchange_rate=rate, memo=description
                    ),
                ]

            transaction = self._writer.create(
                tenant_id,
                lines,
                TransactionMetadata(
                    transaction_date=adjustment_date,
                    description=description,
                    transaction_type=TransactionType.ADJUSTMENT,
                ),
                actor_id,
                recompute_balances=attempt > 1,
            )

            if bank_transaction_id is not None:
                item = self._clearing.set_cleared(
                    reconciliation, ClearableItemType.BANK_TXN, bank_transaction_id, True, actor_id
                )
                if item.amount != amount or ItemDirection(item.direction) is not money_direction:
                    raise ItemMismatchError(
                        str(item.id),
                        f"bank line is {item.direction} {item.amount}, adjustment is "
                        f"{money_direction.value} {amount}",
                    )
                if item.transaction_id is not None:
                    raise ItemMismatchError(str(item.id), "bank line already has an adjustment")
                item.transaction_id = transaction.id
                item.updated_by_id = actor_id
            else:
                item = BankTransaction(
                    tenant_id=tenant_id,
                    bank_account_id=bank_account.id,
                    transaction_date=adjustment_date,
                    amount=amount,
                    direction=money_direction.value,
                    description=description,
                    source=BankTransactionSource.ADJUSTMENT.value,
                    transaction_id=transaction.id,
                    is_locked=False,
                    created_by_id=actor_id,
                )
                self._session.add(item)
                self._session.flush()
                self._clearing.set_cleared(
                    reconciliation, ClearableItemType.BANK_TXN, item.id, True, actor_id
                )
            self._session.flush()

            logger.info(
                "reconciliation_adjustment_posted",
                extra={
                    "adjustment_type": adjustment_type.value,
                    "direction": money_direction.value,
                    "amount": str(amount),
                    "reference_number": transaction.reference_number,
                    "bank_transaction_id": str(item.id),
                },
            )
            return transaction

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, session_id=session_id):
            return run_with_retry(
                self._session,
                "post_adjustment",
                work,
                max_attempts=self._config.posting.max_retry_attempts,
            )
