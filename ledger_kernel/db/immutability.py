"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted transactions and finalized reconciliations must be tamper-proof:
corrections are new reversing transactions, never edits.  Services already
refuse such edits; these listeners catch every other write that goes through
SQLAlchemy (scripts, future services, bugs) before SQL reaches the database.

    session.flush()
         |
         v
    [before_flush]  --> _check_account_deletion ------> AccountReferencedError
    [before_update] --> _check_*_immutability() -----> ImmutableStateError subclass
    [before_delete] --> _check_*_delete() -----------^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                      | Error
------------------|-------------------------------------|--------------------------
Transaction       | After status = POSTED               | PostedTransactionError
LedgerEntry       | When parent transaction is POSTED   | PostedTransactionError
Account           | Deletion once it has ledger entries | AccountReferencedError
Reconciliation    | After status = FINALIZED            | LockedSessionError
Payment           | Financial fields once locked        | ItemLockedError
BankTransaction   | Financial fields once locked        | ItemLockedError

updated_at / updated_by_id are audit metadata and may always change.

The check is "WAS posted/finalized", read from attribute history, so the
DRAFT -> POSTED and IN_PROGRESS -> FINALIZED transitions themselves pass.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # create_tables() also calls this
"""

from sqlalchemy import event, exists, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.domain.dtos import ReconciliationStatus, TransactionStatus
from ledger_kernel.exceptions import (
    AccountReferencedError,
    ItemLockedError,
    LockedSessionError,
    PostedTransactionError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

# Fields of a locked clearable item that may still change
_LOCKABLE_ITEM_MUTABLE = _AUDIT_FIELDS | {"is_locked", "locked_at", "description"}


def _was(target, attr: str, value: str) -> bool:
    """True if the persisted (pre-change) value of ``attr`` equals ``value``."""
    history = get_history(target, attr)
    if history.deleted:
        previous = history.deleted[0]
    elif history.added:
        # Attribute set on a row whose prior value was never loaded; treat the
        # row as not yet in the protected state.
        return False
    else:
        previous = getattr(target, attr)
    return str(getattr(previous, "value", previous)) == value


def _changed_fields(target, allowed: frozenset[str]) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in allowed and attr.history.has_changes()
    ]


def _blocked(entity_type: str, entity_id, operation: str, **fields) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **fields,
        },
    )


# ----------------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------------


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete accounts that have ledger entries or child accounts.

    Runs in before_flush, before the flush plan is fixed.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.transaction import LedgerEntry

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        with session.no_autoflush:
            has_entries = session.execute(
                select(exists().where(LedgerEntry.account_id == obj.id))
            ).scalar()
            has_children = session.execute(
                select(exists().where(Account.parent_id == obj.id))
            ).scalar()

        if has_entries:
            _blocked("Account", obj.id, "DELETE", reason="account_has_ledger_activity")
            raise AccountReferencedError(str(obj.id))
        if has_children:
            _blocked("Account", obj.id, "DELETE", reason="account_has_children")
            raise AccountReferencedError(str(obj.id), reason="account has child accounts")


# ----------------------------------------------------------------------------
# Transactions and ledger entries
# ----------------------------------------------------------------------------


def _check_transaction_immutability(mapper, connection, target):
    if not _was(target, "status", TransactionStatus.POSTED.value):
        return
    changed = _changed_fields(target, _AUDIT_FIELDS)
    if changed:
        _blocked("Transaction", target.id, "UPDATE", fields=changed)
        raise PostedTransactionError(str(target.id), "modified")


def _check_transaction_delete(mapper, connection, target):
    if _was(target, "status", TransactionStatus.POSTED.value):
        _blocked("Transaction", target.id, "DELETE")
        raise PostedTransactionError(str(target.id), "deleted")


def _check_entry_mutation(mapper, connection, target):
    # Read the parent's stored status: an entry removed from its collection
    # no longer has the in-memory parent attached.
    from ledger_kernel.models.transaction import Transaction

    parent_id = get_history(target, "transaction_id").non_added() or [target.transaction_id]
    stored_status = connection.execute(
        select(Transaction.status).where(Transaction.id == parent_id[0])
    ).scalar_one_or_none()
    if stored_status == TransactionStatus.POSTED.value:
        _blocked("LedgerEntry", target.id, "UPDATE/DELETE", transaction_id=str(parent_id[0]))
        raise PostedTransactionError(str(parent_id[0]), "modified")


# ----------------------------------------------------------------------------
# Reconciliation
# ----------------------------------------------------------------------------


def _check_reconciliation_immutability(mapper, connection, target):
    if not _was(target, "status", ReconciliationStatus.FINALIZED.value):
        return
    changed = _changed_fields(target, _AUDIT_FIELDS | {"version"})
    if changed:
        _blocked("Reconciliation", target.id, "UPDATE", fields=changed)
        raise LockedSessionError(str(target.id))


def _check_reconciliation_delete(mapper, connection, target):
    if _was(target, "status", ReconciliationStatus.FINALIZED.value):
        _blocked("Reconciliation", target.id, "DELETE")
        raise LockedSessionError(str(target.id))


# ----------------------------------------------------------------------------
# Clearable items
# ----------------------------------------------------------------------------


def _item_was_locked(target) -> bool:
    return _was(target, "is_locked", "True")


def _check_item_immutability(mapper, connection, target):
    if not _item_was_locked(target):
        return
    changed = _changed_fields(target, _LOCKABLE_ITEM_MUTABLE)
    unlocking = get_history(target, "is_locked").added == [False]
    if changed or unlocking:
        _blocked(type(target).__name__, target.id, "UPDATE", fields=changed)
        raise ItemLockedError(type(target).__name__, str(target.id))


def _check_item_delete(mapper, connection, target):
    if _item_was_locked(target):
        _blocked(type(target).__name__, target.id, "DELETE")
        raise ItemLockedError(type(target).__name__, str(target.id))


# ----------------------------------------------------------------------------
# Registration
# ----------------------------------------------------------------------------

_registered = False


def _listeners():
    from ledger_kernel.models.banking import BankTransaction, Payment
    from ledger_kernel.models.reconciliation import Reconciliation
    from ledger_kernel.models.transaction import LedgerEntry, Transaction

    return [
        (Transaction, "before_update", _check_transaction_immutability),
        (Transaction, "before_delete", _check_transaction_delete),
        (LedgerEntry, "before_update", _check_entry_mutation),
        (LedgerEntry, "before_delete", _check_entry_mutation),
        (Reconciliation, "before_update", _check_reconciliation_immutability),
        (Reconciliation, "before_delete", _check_reconciliation_delete),
        (Payment, "before_update", _check_item_immutability),
        (Payment, "before_delete", _check_item_delete),
        (BankTransaction, "before_update", _check_item_immutability),
        (BankTransaction, "before_delete", _check_item_delete),
        (Session, "before_flush", _check_account_deletion_before_flush),
    ]


def register_immutability_listeners() -> None:
    """Register all ORM immutability listeners (idempotent)."""
    global _registered
    if _registered:
        return
    for target, identifier, fn in _listeners():
        event.listen(target, identifier, fn)
    _registered = True
    logger.debug("immutability_listeners_registered")
