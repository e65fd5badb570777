"""
ClearingService -- mutations of a reconciliation's cleared-item sets.

Responsibility:
    Loads an open reconciliation under a row lock and adds or removes
    payments and bank transactions from its cleared id sets.

Architecture position:
    Kernel > Services.  Flush-only; the reconciliation and adjustment
    facades own the unit of work.

Invariants enforced:
    - FINALIZED sessions are never changed (LockedSessionError).
    - Only items of the session's bank account can be cleared.
    - Items locked by a finalized session cannot be cleared again.
    - Clearing is idempotent: clearing a cleared item (or un-clearing an
      uncleared one) leaves the row untouched.
"""

from uuid import UUID

from ledger_kernel.domain.dtos import ClearableItemType
from ledger_kernel.exceptions import ItemLockedError, LockedSessionError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.banking import BankTransaction, Payment
from ledger_kernel.models.reconciliation import Reconciliation
from ledger_kernel.selectors.reconciliation_selector import ITEM_MODELS, ReconciliationSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.clearing")


class ClearingService(BaseService[Reconciliation]):
    """Flush-only writer for cleared-item sets."""

    def __init__(self, session, selector: ReconciliationSelector | None = None):
        super().__init__(session)
        self._selector = selector or ReconciliationSelector(session)

    def lock_open_session(self, tenant_id: UUID, session_id: UUID) -> Reconciliation:
        """Load the session FOR UPDATE; FINALIZED raises LockedSessionError."""
        reconciliation = self._selector.session_by_id(tenant_id, session_id, for_update=True)
        if reconciliation.is_finalized:
            logger.warning(
                "finalized_reconciliation_change_rejected",
                extra={"reconciliation_id": str(reconciliation.id)},
            )
            raise LockedSessionError(str(reconciliation.id))
        return reconciliation

    def set_cleared(
        self,
        reconciliation: Reconciliation,
        item_type: ClearableItemType,
        item_id: UUID,
        is_cleared: bool,
        actor_id: UUID,
    ) -> Payment | BankTransaction:
        """Add or remove one item from the session's cleared set."""
        item_type = ClearableItemType(item_type)
        item = self._selector.item(
            reconciliation.tenant_id,
            item_type,
            item_id,
            bank_account_id=reconciliation.bank_account_id,
        )
        if item.is_locked:
            raise ItemLockedError(ITEM_MODELS[item_type].__name__, str(item.id))

        ids = set(reconciliation.cleared_ids(item_type))
        key = str(item.id)
        changed = (key not in ids) if is_cleared else (key in ids)
        if changed:
            if is_cleared:
                ids.add(key)
            else:
                ids.discard(key)
            reconciliation.set_cleared_ids(item_type, list(ids))
            reconciliation.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "reconciliation_item_toggled",
            extra={
                "reconciliation_id": str(reconciliation.id),
                "item_type": item_type.value,
                "item_id": key,
                "is_cleared": is_cleared,
                "changed": changed,
            },
        )
        return item
