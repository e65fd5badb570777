"""
Ledger Kernel - multi-tenant double-entry ledger core.

Owns the chart of accounts, balanced transaction posting, reversals, and the
persistent state behind bank reconciliation.  Every operation is scoped by an
explicit tenant id.
"""

__version__ = "0.1.0"
