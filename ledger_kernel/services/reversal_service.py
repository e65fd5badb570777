"""
ReversalService -- offsets a POSTED transaction with a new one.

Responsibility:
    Builds a REVERSAL transaction whose entries are the original's entries
    with DEBIT and CREDIT swapped (same accounts, amounts, currencies and
    exchange rates) and posts it immediately through the LedgerWriter.

Architecture position:
    Kernel > Services.  Flush-only; the caller owns the unit of work.

Invariants enforced:
    - Only POSTED transactions can be reversed.
    - A transaction is reversed at most once (service check plus the unique
      constraint on reversal_of_id).
    - The original transaction is never modified; the audit trail shows two
      balanced, immutable transactions.
    - Net effect of original + reversal on every touched account is zero,
      because base amounts are recomputed from the same amount and rate.

Failure modes:
    - TransactionNotFoundError for ids outside the tenant.
    - TransactionNotPostedError if the target is DRAFT or VOIDED.
    - TransactionAlreadyReversedError if a reversal already exists.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    EntrySide,
    LineSpec,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.exceptions import (
    TransactionAlreadyReversedError,
    TransactionNotPostedError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.ledger_writer import LedgerWriter

logger = get_logger("services.reversal")


class ReversalService(BaseService[Transaction]):
    """
    Reverses posted transactions.

    Contract:
        ``reverse_transaction`` returns the new POSTED reversal.  Nothing is
        committed.

    Non-goals:
        - Partial reversals.
        - Changing the original's status; reversal state is derived from
          the existence of a row pointing back through reversal_of_id.
    """

    def __init__(self, session, writer: LedgerWriter, clock: Clock | None = None):
        super().__init__(session)
        self._writer = writer
        self._clock = clock or SystemClock()

    def find_reversal(self, transaction_id: UUID) -> Transaction | None:
        return self.session.execute(
            select(Transaction).where(Transaction.reversal_of_id == transaction_id)
        ).scalar_one_or_none()

    def reverse_transaction(
        self,
        tenant_id: UUID,
        transaction_id: UUID,
        reason: str,
        actor_id: UUID,
        reversal_date: date | None = None,
        recompute_balances: bool = False,
    ) -> Transaction:
        """
        Post the offsetting transaction for ``transaction_id``.

        Args:
            reason: Shown in the reversal's description.
            reversal_date: Accounting date of the reversal; defaults to today.
            recompute_balances: Passed through to the writer on retries.
        """
        with LogContext.bind(transaction_id=transaction_id, actor_id=actor_id):
            original = self._writer.get_transaction(tenant_id, transaction_id, for_update=True)

            if TransactionStatus(original.status) is not TransactionStatus.POSTED:
                logger.warning(
                    "reversal_rejected_not_posted",
                    extra={"status": str(original.status)},
                )
                raise TransactionNotPostedError(str(transaction_id), str(original.status))

            existing = self.find_reversal(original.id)
            if existing is not None:
                logger.warning(
                    "reversal_rejected_already_reversed",
                    extra={"reversal_id": str(existing.id)},
                )
                raise TransactionAlreadyReversedError(str(transaction_id), str(existing.id))

            lines = [
                LineSpec(
                    account_id=entry.account_id,
                    side=EntrySide(entry.side).opposite(),
                    amount=entry.amount,
                    currency=entry.currency,
                    exchange_rate=entry.exchange_rate,
                    memo=entry.memo,
                )
                for entry in original.entries
            ]
            metadata = TransactionMetadata(
                transaction_date=reversal_date or self._clock.today(),
                description=(
                    f"REVERSAL: {reason} (reversal of {original.reference_number})"
                ),
                transaction_type=TransactionType.REVERSAL,
                reference=f"{original.reference_number}-REV",
            )

            reversal = self._writer.create(
                tenant_id,
                lines,
                metadata,
                actor_id,
                status=TransactionStatus.POSTED,
                reversal_of_id=original.id,
                recompute_balances=recompute_balances,
            )

            logger.info(
                "reversal_completed",
                extra={
                    "original_reference": original.reference_number,
                    "reversal_id": str(reversal.id),
                    "reversal_reference": reversal.reference_number,
                    "reason": reason,
                },
            )
            return reversal
