"""
Ledger engines -- pure calculation layer, zero I/O.

Engines may import ``ledger_kernel.domain`` and the kernel logger; they never
touch the database.  Services in ``ledger_services`` load state, call an
engine, and persist the outcome.
"""
