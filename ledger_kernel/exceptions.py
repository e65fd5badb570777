"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers must be able to react to a failure without parsing its message:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.post_transaction(tenant_id, lines, metadata, actor_id)
    except UnbalancedError as e:
        api_response(code=e.code, difference=str(e.difference))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- EmptyTransactionError
    |   +-- InvalidAmountError
    |   +-- InvalidCurrencyError
    |   +-- MissingSideError
    |   +-- AccountInactiveError
    |   +-- AccountTypeMismatchError
    |   +-- DuplicateAccountCodeError
    |   +-- ControlAccountError
    |   +-- TransactionNotPostedError
    |   +-- MissingExchangeRateError
    |   +-- BaseCurrencyRateError
    |   +-- SingleAccountTransactionError
    |   +-- ItemMismatchError
    |   +-- ReconciliationUnbalancedError
    |
    +-- UnbalancedError
    |
    +-- ImmutableStateError
    |   +-- PostedTransactionError
    |   +-- TransactionAlreadyReversedError
    |   +-- AccountReferencedError
    |   +-- ItemLockedError
    |   +-- ItemClearedInSessionError
    |   +-- ItemPostedError
    |   +-- LockedSessionError
    |
    +-- NotFoundError
    |   +-- AccountNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- BankAccountNotFoundError
    |   +-- ReconciliationNotFoundError
    |   +-- ClearableItemNotFoundError
    |
    +-- DuplicateSessionError
    |
    +-- ConflictError

===============================================================================
PROPAGATION
===============================================================================

All of these are recoverable at the caller boundary.  Services roll back the
unit of work and re-raise; nothing here should terminate the process.
ConflictError is only raised after the bounded retry in
``ledger_kernel.services.retry_service`` has been exhausted.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation


class ValidationError(LedgerKernelError):
    """Malformed or disallowed input."""

    code: str = "VALIDATION_ERROR"


class EmptyTransactionError(ValidationError):
    """A transaction needs at least two ledger lines."""

    code: str = "EMPTY_TRANSACTION"

    def __init__(self, line_count: int):
        self.line_count = line_count
        super().__init__(
            f"A transaction requires at least 2 lines, got {line_count}"
        )


class InvalidAmountError(ValidationError):
    """Amount or exchange rate is not a positive Decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = str(value)
        super().__init__(f"{field} must be a positive Decimal, got {value!r}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a recognized ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency!r}")


class MissingSideError(ValidationError):
    """A transaction needs at least one debit and one credit."""

    code: str = "MISSING_SIDE"

    def __init__(self, missing_side: str):
        self.missing_side = missing_side
        super().__init__(
            f"A transaction requires at least one {missing_side} line"
        )


class AccountInactiveError(ValidationError):
    """Account exists but is deactivated."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account is inactive: {account_id}")


class AccountTypeMismatchError(ValidationError):
    """Child account type differs from its parent's."""

    code: str = "ACCOUNT_TYPE_MISMATCH"

    def __init__(self, account_type: str, parent_type: str):
        self.account_type = account_type
        self.parent_type = parent_type
        super().__init__(
            f"Child account type {account_type} must match parent type {parent_type}"
        )


class DuplicateAccountCodeError(ValidationError):
    """Account code already used within the tenant."""

    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, tenant_id: str, account_code: str):
        self.tenant_id = tenant_id
        self.account_code = account_code
        super().__init__(f"Account code already exists: {account_code}")


class ControlAccountError(ValidationError):
    """Manual journals may not post to a control account."""

    code: str = "CONTROL_ACCOUNT"

    def __init__(self, account_id: str, account_code: str):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(
            f"Account {account_code} is a control account and does not accept "
            "manual journal entries"
        )


class TransactionNotPostedError(ValidationError):
    """Only POSTED transactions can be reversed."""

    code: str = "TRANSACTION_NOT_POSTED"

    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            f"Transaction {transaction_id} is {status}; only posted "
            "transactions can be reversed"
        )


class MissingExchangeRateError(ValidationError):
    """A non-base-currency line was requested without a rate."""

    code: str = "MISSING_EXCHANGE_RATE"

    def __init__(self, currency: str, base_currency: str):
        self.currency = currency
        self.base_currency = base_currency
        super().__init__(
            f"An exchange rate from {currency} to {base_currency} is required"
        )


class BaseCurrencyRateError(ValidationError):
    """A line already in the base currency carries a rate other than 1."""

    code: str = "BASE_CURRENCY_RATE"

    def __init__(self, currency: str, exchange_rate: Decimal):
        self.currency = currency
        self.exchange_rate = exchange_rate
        super().__init__(
            f"Lines in base currency {currency} must use exchange rate 1, got {exchange_rate}"
        )


class SingleAccountTransactionError(ValidationError):
    """Every line of the transaction hits the same account."""

    code: str = "SINGLE_ACCOUNT_TRANSACTION"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(
            f"Debits and credits all post to account {account_id}; the "
            "transaction would have no ledger effect"
        )


class ItemMismatchError(ValidationError):
    """A clearable item does not fit the operation it was given to."""

    code: str = "ITEM_MISMATCH"

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Item {item_id}: {reason}")


class ReconciliationUnbalancedError(ValidationError):
    """
    Finalize attempted while the reconciliation gap is not zero.

    The signed difference tells the operator which direction to look:
    positive means the book side is over the statement (uncleared
    withdrawals or over-cleared deposits), negative the reverse.
    """

    code: str = "RECONCILIATION_UNBALANCED"

    def __init__(
        self,
        reconciliation_id: str,
        difference: Decimal,
        calculated_balance: Decimal,
        statement_balance: Decimal,
    ):
        self.reconciliation_id = reconciliation_id
        self.difference = difference
        self.calculated_balance = calculated_balance
        self.statement_balance = statement_balance
        super().__init__(
            f"Cannot finalize: difference of {difference} must be zero "
            f"(calculated {calculated_balance}, statement {statement_balance})"
        )


# Balance


class UnbalancedError(LedgerKernelError):
    """Transaction debits do not equal credits in the base currency."""

    code: str = "UNBALANCED"

    def __init__(
        self,
        total_debits: Decimal,
        total_credits: Decimal,
        currency: str,
    ):
        self.total_debits = total_debits
        self.total_credits = total_credits
        self.difference = total_debits - total_credits
        self.currency = currency
        super().__init__(
            f"Transaction is not balanced in {currency}: "
            f"debits={total_debits}, credits={total_credits}, "
            f"difference={self.difference}"
        )


# Immutable state

_USE_REVERSAL = "Create a reversing entry to correct mistakes."


class ImmutableStateError(LedgerKernelError):
    """Attempt to change state that can no longer change."""

    code: str = "IMMUTABLE_STATE"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id} is immutable: {reason}")


class PostedTransactionError(ImmutableStateError):
    """Edit or delete attempted on a POSTED transaction."""

    code: str = "POSTED_TRANSACTION_IMMUTABLE"

    def __init__(self, transaction_id: str, operation: str):
        self.operation = operation
        super().__init__(
            "Transaction",
            transaction_id,
            f"posted transactions cannot be {operation}. {_USE_REVERSAL}",
        )


class TransactionAlreadyReversedError(ImmutableStateError):
    """Transaction already has a reversal."""

    code: str = "TRANSACTION_ALREADY_REVERSED"

    def __init__(self, transaction_id: str, reversal_id: str):
        self.reversal_id = reversal_id
        super().__init__(
            "Transaction",
            transaction_id,
            f"already reversed by {reversal_id}",
        )


class AccountReferencedError(ImmutableStateError):
    """Account with ledger activity or children cannot be deleted."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str, reason: str = "account has ledger activity"):
        super().__init__(
            "Account",
            account_id,
            f"{reason}; deactivate it instead",
        )


class ItemLockedError(ImmutableStateError):
    """Item was cleared by a finalized reconciliation."""

    code: str = "ITEM_LOCKED"

    def __init__(self, item_type: str, item_id: str):
        self.item_type = item_type
        super().__init__(
            item_type,
            item_id,
            "locked by a finalized reconciliation",
        )


class ItemClearedInSessionError(ImmutableStateError):
    """Item is cleared in a reconciliation that is still in progress."""

    code: str = "ITEM_CLEARED_IN_SESSION"

    def __init__(self, item_type: str, item_id: str, reconciliation_id: str):
        self.item_type = item_type
        self.reconciliation_id = reconciliation_id
        super().__init__(
            item_type,
            item_id,
            f"cleared in open reconciliation {reconciliation_id}; un-clear it first",
        )


class ItemPostedError(ImmutableStateError):
    """Bank line carries a posted ledger transaction (an adjustment)."""

    code: str = "ITEM_POSTED"

    def __init__(self, item_type: str, item_id: str, transaction_id: str | None):
        self.item_type = item_type
        self.transaction_id = transaction_id
        super().__init__(
            item_type,
            item_id,
            f"linked to posted transaction {transaction_id or '(adjustment)'}. {_USE_REVERSAL}",
        )


class LockedSessionError(ImmutableStateError):
    """Mutation attempted on a FINALIZED reconciliation."""

    code: str = "LOCKED_SESSION"

    def __init__(self, reconciliation_id: str):
        self.reconciliation_id = reconciliation_id
        super().__init__(
            "Reconciliation",
            reconciliation_id,
            f"reconciliation is finalized. {_USE_REVERSAL}",
        )


# Lookup


class NotFoundError(LedgerKernelError):
    """Unknown id within the tenant."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        super().__init__("Account", account_id)


class TransactionNotFoundError(NotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        super().__init__("Transaction", transaction_id)


class BankAccountNotFoundError(NotFoundError):
    code: str = "BANK_ACCOUNT_NOT_FOUND"

    def __init__(self, bank_account_id: str):
        super().__init__("BankAccount", bank_account_id)


class ReconciliationNotFoundError(NotFoundError):
    code: str = "RECONCILIATION_NOT_FOUND"

    def __init__(self, reconciliation_id: str):
        super().__init__("Reconciliation", reconciliation_id)


class ClearableItemNotFoundError(NotFoundError):
    code: str = "CLEARABLE_ITEM_NOT_FOUND"

    def __init__(self, item_type: str, item_id: str):
        super().__init__(item_type, item_id)


# Reconciliation sessions


class DuplicateSessionError(LedgerKernelError):
    """A reconciliation is already open (or finalized) for the bank account."""

    code: str = "DUPLICATE_SESSION"

    def __init__(self, bank_account_id: str, existing_id: str, existing_status: str):
        self.bank_account_id = bank_account_id
        self.existing_id = existing_id
        self.existing_status = existing_status
        super().__init__(
            f"Bank account {bank_account_id} already has reconciliation "
            f"{existing_id} ({existing_status})"
        )


# Concurrency


class ConflictError(LedgerKernelError):
    """Concurrent updates kept conflicting after the bounded retry."""

    code: str = "CONFLICT"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} conflicted with concurrent updates after "
            f"{attempts} attempts"
        )
