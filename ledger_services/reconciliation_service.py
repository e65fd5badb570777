"""
ledger_services.reconciliation_service
======================================

Responsibility:
    Bank reconciliation sessions: start a session against a statement,
    clear and un-clear book and bank items, report the gap, suggest and
    apply matches, and finalize.

Architecture:
    Services layer.  Reads go through ReconciliationSelector, the gap and
    match scoring are pure engines (ledger_engines.reconciliation,
    ledger_engines.matching).  Each public write is one unit of work run
    through ``run_with_retry``.

Invariants enforced:
    - At most one IN_PROGRESS session per bank account, and one session per
      (bank account, statement date).
    - A new session opens at the last finalized statement balance, or the
      bank account's opening balance when none exists.
    - The gap is never stored; it is recomputed from live item values on
      every read, so a corrected feed row is reflected immediately.
    - FINALIZED sessions never change; items they cleared are locked and
      can never be cleared again.
    - The session row is read FOR UPDATE and carries a version counter, so
      two concurrent toggles cannot drop each other's changes.

Failure modes:
    - DuplicateSessionError on start.
    - LockedSessionError for any change to a FINALIZED session.
    - ClearableItemNotFoundError for items of another bank account.
    - ItemLockedError for items locked by an earlier finalized session.
    - ReconciliationUnbalancedError (carries the signed difference) when
      finalizing with a non-zero gap.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_engines.matching import MatchSuggestion, MatchSuggestionEngine, MatchWeights
from ledger_engines.reconciliation import ClearableItem, Gap, compute_gap
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import ClearableItemType, ItemDirection, ReconciliationStatus
from ledger_kernel.exceptions import (
    DuplicateSessionError,
    InvalidAmountError,
    ItemMismatchError,
    ReconciliationUnbalancedError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.banking import BankTransaction, Payment
from ledger_kernel.models.reconciliation import Reconciliation
from ledger_kernel.selectors.reconciliation_selector import (
    ITEM_MODELS,
    ReconciliationSelector,
    item_date,
)
from ledger_kernel.services.clearing_service import ClearingService
from ledger_kernel.services.retry_service import run_with_retry

logger = get_logger("services.reconciliation")

T = TypeVar("T")


def to_clearable(item: Payment | BankTransaction, reconciliation: Reconciliation) -> ClearableItem:
    """Project a payment or bank transaction for one session."""
    item_type = (
        ClearableItemType.PAYMENT if isinstance(item, Payment) else ClearableItemType.BANK_TXN
    )
    return ClearableItem(
        item_id=item.id,
        item_type=item_type,
        item_date=item_date(item),
        amount=item.amount,
        direction=ItemDirection(item.direction),
        description=item.description,
        reference=item.reference,
        payee=item.payee_name,
        is_cleared=reconciliation.is_cleared(item_type, item.id),
        is_locked=item.is_locked,
    )


class ReconciliationService:
    """
    Bank reconciliation session manager.

    Contract:
        Write methods commit before returning or roll back and re-raise.
        ``toggle_clear`` returns the recomputed Gap.
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
        self._selector = ReconciliationSelector(session)
        self._clearing = ClearingService(session, self._selector)
        matching = self._config.matching
        self._matching = MatchSuggestionEngine(
            MatchWeights(
                base=matching.base_score,
                reference=matching.reference_weight,
                same_date=matching.same_date_weight,
                payee=matching.payee_weight,
                date_window_days=matching.date_window_days,
            )
        )

    def _unit_of_work(self, operation: str, work: Callable[[int], T]) -> T:
        return run_with_retry(
            self._session,
            operation,
            work,
            max_attempts=self._config.posting.max_retry_attempts,
        )

    # =========================================================================
    # Sessions
    # =========================================================================

    def start_session(
        self,
        tenant_id: UUID,
        bank_account_id: UUID,
        statement_date: date,
        statement_balance: Decimal,
        actor_id: UUID,
    ) -> Reconciliation:
        """
        Open a reconciliation for one statement.

        Raises:
            DuplicateSessionError: an IN_PROGRESS session exists for the bank
                account, or a session already covers ``statement_date``.
        """
        if not isinstance(statement_balance, Decimal):
            raise InvalidAmountError("statement_balance", statement_balance)

        def work(attempt: int) -> Reconciliation:
            # Row lock serializes concurrent starts for the same bank account.
            bank_account = self._selector.bank_account(tenant_id, bank_account_id, for_update=True)

            existing = self._selector.open_session(bank_account.id)
            if existing is None:
                existing = self._selector.session_for_statement(bank_account.id, statement_date)
            if existing is not None:
                logger.warning(
                    "reconciliation_start_rejected",
                    extra={
                        "existing_id": str(existing.id),
                        "existing_status": str(existing.status),
                    },
                )
                raise DuplicateSessionError(str(bank_account.id), str(existing.id), str(existing.status))

            reconciliation = Reconciliation(
                tenant_id=tenant_id,
                bank_account_id=bank_account.id,
                statement_date=statement_date,
                statement_balance=statement_balance,
                opening_balance=bank_account.carried_balance,
                status=ReconciliationStatus.IN_PROGRESS.value,
                cleared_payment_ids=[],
                cleared_transaction_ids=[],
                created_by_id=actor_id,
            )
            self._session.add(reconciliation)
            self._session.flush()
            logger.info(
                "reconciliation_started",
                extra={
                    "reconciliation_id": str(reconciliation.id),
                    "bank_account_id": str(bank_account.id),
                    "statement_date": statement_date.isoformat(),
                    "statement_balance": str(statement_balance),
                    "opening_balance": str(reconciliation.opening_balance),
                },
            )
            return reconciliation

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            return self._unit_of_work("start_session", work)

    def get_session(self, tenant_id: UUID, session_id: UUID) -> Reconciliation:
        return self._selector.session_by_id(tenant_id, session_id)

    def list_sessions(self, tenant_id: UUID, bank_account_id: UUID) -> list[Reconciliation]:
        self._selector.bank_account(tenant_id, bank_account_id)
        return self._selector.sessions_for(tenant_id, bank_account_id)

    # =========================================================================
    # Items and gap
    # =========================================================================

    def _items(self, reconciliation: Reconciliation) -> list[ClearableItem]:
        payments, bank_txns = self._selector.items_for_statement(reconciliation)
        return [to_clearable(p, reconciliation) for p in payments] + [
            to_clearable(b, reconciliation) for b in bank_txns
        ]

    def clearable_items(self, tenant_id: UUID, session_id: UUID) -> list[ClearableItem]:
        """Book items first, then bank items, each in date order."""
        return self._items(self._selector.session_by_id(tenant_id, session_id))

    def _gap(self, reconciliation: Reconciliation) -> Gap:
        items = self._items(reconciliation)
        return compute_gap(
            reconciliation.opening_balance,
            reconciliation.statement_balance,
            [i for i in items if i.is_cleared],
            [i for i in items if not i.is_cleared],
            tolerance=self._config.balance_tolerance,
        )

    def get_gap(self, tenant_id: UUID, session_id: UUID) -> Gap:
        """Recompute the gap from current item values."""
        return self._gap(self._selector.session_by_id(tenant_id, session_id))

    def toggle_clear(
        self,
        tenant_id: UUID,
        session_id: UUID,
        item_id: UUID,
        item_type: ClearableItemType | str,
        is_cleared: bool,
        actor_id: UUID,
    ) -> Gap:
        """Mark an item cleared or uncleared and return the recomputed gap."""

        def work(attempt: int) -> Gap:
            reconciliation = self._clearing.lock_open_session(tenant_id, session_id)
            self._clearing.set_cleared(reconciliation, ClearableItemType(item_type), item_id, is_cleared, actor_id)
            return self._gap(reconciliation)

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, session_id=session_id):
            return self._unit_of_work("toggle_clear", work)

    # =========================================================================
    # Finalize
    # =========================================================================

    def finalize(self, tenant_id: UUID, session_id: UUID, actor_id: UUID) -> Reconciliation:
        """
        Close the session once the gap is zero.

        Locks every cleared item and carries the statement balance and date
        onto the bank account for the next session.
        """

        def work(attempt: int) -> Reconciliation:
            reconciliation = self._clearing.lock_open_session(tenant_id, session_id)
            gap = self._gap(reconciliation)
            if not gap.is_balanced:
                logger.warning(
                    "reconciliation_finalize_rejected",
                    extra={
                        "reconciliation_id": str(reconciliation.id),
                        "difference": str(gap.difference),
                    },
                )
                raise ReconciliationUnbalancedError(
                    str(reconciliation.id),
                    gap.difference,
                    gap.calculated_balance,
                    gap.statement_balance,
                )

            now = self._clock.now()
            for item_type, model in ITEM_MODELS.items():
                ids = reconciliation.cleared_ids(item_type)
                if not ids:
                    continue
                items = self._session.execute(
                    select(model).where(model.id.in_(ids)).with_for_update()
                ).scalars()
                for item in items:
                    item.is_locked = True
                    item.locked_at = now
                    item.updated_by_id = actor_id

            reconciliation.status = ReconciliationStatus.FINALIZED.value
            reconciliation.finalized_at = now
            reconciliation.finalized_by_id = actor_id
            reconciliation.updated_by_id = actor_id

            bank_account = reconciliation.bank_account
            if (
                bank_account.last_reconciled_date is None
                or reconciliation.statement_date >= bank_account.last_reconciled_date
            ):
                bank_account.last_reconciled_balance = reconciliation.statement_balance
                bank_account.last_reconciled_date = reconciliation.statement_date
                bank_account.updated_by_id = actor_id
            self._session.flush()

            logger.info(
                "reconciliation_finalized",
                extra={
                    "reconciliation_id": str(reconciliation.id),
                    "cleared_count": gap.cleared_count,
                    "statement_balance": str(reconciliation.statement_balance),
                },
            )
            return reconciliation

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, session_id=session_id):
            return self._unit_of_work("finalize", work)

    # =========================================================================
    # Matching
    # =========================================================================

    def _suggest(self, reconciliation: Reconciliation) -> list[MatchSuggestion]:
        items = [i for i in self._items(reconciliation) if not i.is_cleared and not i.is_locked]
        return self._matching.suggest(
            payments=[i for i in items if i.item_type is ClearableItemType.PAYMENT],
            bank_items=[i for i in items if i.item_type is ClearableItemType.BANK_TXN],
        )

    def suggest_matches(self, tenant_id: UUID, session_id: UUID) -> list[MatchSuggestion]:
        """Scored pairs over the session's uncleared items, best first."""
        return self._suggest(self._selector.session_by_id(tenant_id, session_id))

    def auto_apply(
        self,
        tenant_id: UUID,
        session_id: UUID,
        actor_id: UUID,
        min_confidence: int | None = None,
    ) -> list[MatchSuggestion]:
        """
        Clear every pair selected at ``min_confidence`` in one unit of work.

        Returns the applied suggestions.
        """
        threshold = (
            self._config.matching.min_confidence if min_confidence is None else min_confidence
        )

        def work(attempt: int) -> list[MatchSuggestion]:
            reconciliation = self._clearing.lock_open_session(tenant_id, session_id)
            chosen = self._matching.select_auto_matches(self._suggest(reconciliation), threshold)
            for suggestion in chosen:
                self._clearing.set_cleared(
                    reconciliation, ClearableItemType.PAYMENT, suggestion.payment_id, True, actor_id
                )
                self._clearing.set_cleared(
                    reconciliation,
                    ClearableItemType.BANK_TXN,
                    suggestion.bank_transaction_id,
                    True,
                    actor_id,
                )
            logger.info(
                "reconciliation_auto_applied",
                extra={"applied": len(chosen), "min_confidence": threshold},
            )
            return chosen

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, session_id=session_id):
            return self._unit_of_work("auto_apply", work)

    def apply_match(
        self,
        tenant_id: UUID,
        session_id: UUID,
        payment_id: UUID,
        bank_transaction_id: UUID,
        actor_id: UUID,
    ) -> Gap:
        """Clear a hand-picked payment and bank transaction together."""

        def work(attempt: int) -> Gap:
            reconciliation = self._clearing.lock_open_session(tenant_id, session_id)
            payment = self._selector.item(
                tenant_id, ClearableItemType.PAYMENT, payment_id, reconciliation.bank_account_id
            )
            bank_txn = self._selector.item(
                tenant_id,
                ClearableItemType.BANK_TXN,
                bank_transaction_id,
                reconciliation.bank_account_id,
            )
            if payment.amount != bank_txn.amount or payment.direction != bank_txn.direction:
                raise ItemMismatchError(
                    str(bank_transaction_id),
                    f"amount/direction {bank_txn.amount} {bank_txn.direction} does not match "
                    f"payment {payment.amount} {payment.direction}",
                )
            self._clearing.set_cleared(reconciliation, ClearableItemType.PAYMENT, payment_id, True, actor_id)
            self._clearing.set_cleared(
                reconciliation, ClearableItemType.BANK_TXN, bank_transaction_id, True, actor_id
            )
            return self._gap(reconciliation)

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, session_id=session_id):
            return self._unit_of_work("apply_match", work)
