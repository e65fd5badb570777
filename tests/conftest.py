"""
Pytest fixtures for the ledger test suite.

Provides:
- A fresh in-memory SQLite database per test (tables plus immutability
  listeners), and a session bound to it
- Deterministic clock, tenant and actor ids
- The four service facades wired to the same session
- A seeded chart of accounts and a bank account with an opening balance
- Structured log capture
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_config import LedgerConfig
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import AccountType, LineSpec, TransactionMetadata
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_services import AdjustmentPoster, BankingService, LedgerService, ReconciliationService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.post_transaction(...)
            logs = captured_logs()
            assert any(r["message"] == "transaction_write_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine):
    session = get_session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Identity, time, configuration
# =============================================================================


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def other_tenant_id():
    return uuid4()


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 1, 31, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return LedgerConfig()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def ledger(session, config, clock):
    return LedgerService(session, config, clock)


@pytest.fixture
def banking(session, config, clock):
    return BankingService(session, config, clock)


@pytest.fixture
def reconciliation(session, config, clock):
    return ReconciliationService(session, config, clock)


@pytest.fixture
def adjustments(session, config, clock):
    return AdjustmentPoster(session, config, clock)


# =============================================================================
# Seed data
# =============================================================================

CHART = [
    ("1000", "Cash", AccountType.ASSET, True),
    ("1100", "Operating Bank", AccountType.ASSET, True),
    ("1200", "Accounts Receivable", AccountType.ASSET, False),
    ("2000", "Accounts Payable", AccountType.LIABILITY, False),
    ("3000", "Owner Equity", AccountType.EQUITY, True),
    ("4000", "Sales Revenue", AccountType.REVENUE, True),
    ("4100", "Interest Income", AccountType.REVENUE, True),
    ("5000", "Operating Expenses", AccountType.EXPENSE, True),
    ("5100", "Bank Charges", AccountType.EXPENSE, True),
    ("5200", "Withholding Tax", AccountType.EXPENSE, True),
]


@pytest.fixture
def accounts(ledger, tenant_id, actor_id):
    """Standard chart of accounts keyed by code.  1200 and 2000 are control accounts."""
    return {
        code: ledger.create_account(
            tenant_id,
            code,
            name,
            account_type,
            actor_id,
            allow_manual_journal=manual,
        )
        for code, name, account_type, manual in CHART
    }


@pytest.fixture
def post_journal(ledger, tenant_id, actor_id, accounts):
    """Post a two-line journal: Dr ``debit_code`` / Cr ``credit_code``."""

    def _post(
        debit_code: str,
        credit_code: str,
        amount: Decimal | str,
        transaction_date: date = date(2024, 1, 15),
        description: str = "Test journal",
    ):
        amount = Decimal(amount)
        return ledger.post_transaction(
            tenant_id,
            [
                LineSpec.debit(accounts[debit_code].id, amount, "USD"),
                LineSpec.credit(accounts[credit_code].id, amount, "USD"),
            ],
            TransactionMetadata(transaction_date, description),
            actor_id,
        )

    return _post


@pytest.fixture
def bank_account(banking, tenant_id, actor_id, accounts):
    """Operating bank account on GL 1100 with an opening balance of 1000.00."""
    return banking.create_bank_account(
        tenant_id,
        "Operating Account",
        accounts["1100"].id,
        actor_id,
        opening_balance=Decimal("1000.00"),
        account_number="0012345678",
    )
