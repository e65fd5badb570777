"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.banking import BankAccount, BankTransaction, Payment
from ledger_kernel.models.reconciliation import Reconciliation
from ledger_kernel.models.transaction import LedgerEntry, Transaction

__all__ = [
    "Account",
    "BankAccount",
    "BankTransaction",
    "LedgerEntry",
    "Payment",
    "Reconciliation",
    "Transaction",
]
