"""
ledger_services -- unit-of-work facades over the ledger kernel.

Each public method of these services is one unit of work: it commits on
success and rolls back (then re-raises) on failure, retrying concurrency
conflicts through ``ledger_kernel.services.retry_service.run_with_retry``.
"""

from ledger_services.adjustment_service import AdjustmentPoster
from ledger_services.banking_service import BankingService, FeedRow
from ledger_services.ledger_service import LedgerService
from ledger_services.reconciliation_service import ReconciliationService

__all__ = [
    "AdjustmentPoster",
    "BankingService",
    "FeedRow",
    "LedgerService",
    "ReconciliationService",
]
