"""
Tests for the ledger posting engine.

Covers:
- Balanced posting and atomic balance updates
- Unbalanced rejection with the signed difference
- Line validation (count, sides, amounts, rates, currencies, accounts)
- Control accounts
- Multi-currency base amounts
- Reference number allocation
- Failed posts leave no trace
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import (
    EntrySide,
    LineSpec,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    BaseCurrencyRateError,
    ControlAccountError,
    EmptyTransactionError,
    InvalidAmountError,
    InvalidCurrencyError,
    MissingSideError,
    SingleAccountTransactionError,
    TransactionNotFoundError,
    UnbalancedError,
    ValidationError,
)
from ledger_kernel.models.transaction import Transaction

JAN_15 = TransactionMetadata(date(2024, 1, 15), "Cash sale")


class TestPostTransaction:
    def test_balanced_transaction_posts(self, ledger, tenant_id, actor_id, accounts, clock):
        txn = ledger.post_transaction(
            tenant_id,
            [
                LineSpec.debit(accounts["1000"].id, Decimal("100.00"), "USD"),
                LineSpec.credit(accounts["4000"].id, Decimal("100.00"), "USD"),
            ],
            JAN_15,
            actor_id,
        )

        assert txn.status == TransactionStatus.POSTED
        assert txn.transaction_type == TransactionType.JOURNAL
        assert txn.posted_at is not None
        assert txn.created_by_id == actor_id
        assert [e.line_number for e in txn.entries] == [1, 2]
        assert txn.total_debits == txn.total_credits == Decimal("100.00")

    def test_balances_updated_with_post(self, ledger, tenant_id, accounts, post_journal):
        post_journal("1000", "4000", "100.00")

        assert ledger.get_account(tenant_id, accounts["1000"].id).balance == Decimal("100.00")
        assert ledger.get_account(tenant_id, accounts["4000"].id).balance == Decimal("-100.00")

    def test_multi_line_split(self, ledger, tenant_id, actor_id, accounts):
        txn = ledger.post_transaction(
            tenant_id,
            [
                LineSpec.debit(accounts["1000"].id, Decimal("70.00"), "USD"),
                LineSpec.debit(accounts["1100"].id, Decimal("30.00"), "USD"),
                LineSpec.credit(accounts["4000"].id, Decimal("100.00"), "USD"),
            ],
            JAN_15,
            actor_id,
        )

        assert len(txn.entries) == 3


class TestUnbalanced:
    def test_unbalanced_rejected_with_signed_difference(self, ledger, tenant_id, actor_id, accounts, session):
        with pytest.raises(UnbalancedError) as exc_info:
            ledger.post_transaction(
                tenant_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("100.00"), "USD"),
                    LineSpec.credit(accounts["4000"].id, Decimal("90.00"), "USD"),
                ],
                JAN_15,
                actor_id,
            )

        assert exc_info.value.difference == Decimal("10.00")
        assert exc_info.value.total_debits == Decimal("100.00")
        assert exc_info.value.total_credits == Decimal("90.00")
        assert session.query(Transaction).count() == 0
        assert ledger.get_account(tenant_id, accounts["1000"].id).balance == Decimal("0")

    def test_credit_heavy_difference_is_negative(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(UnbalancedError) as exc_info:
            ledger.post_transaction(
                tenant_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("90.00"), "USD"),
                    LineSpec.credit(accounts["4000"].id, Decimal("100.00"), "USD"),
                ],
                JAN_15,
                actor_id,
            )

        assert exc_info.value.difference == Decimal("-10.00")

    def test_validate_balance_reports_without_posting(self, ledger, accounts):
        check = ledger.validate_balance(
            [
                LineSpec.debit(accounts["1000"].id, Decimal("100.00"), "USD"),
                LineSpec.credit(accounts["4000"].id, Decimal("90.00"), "USD"),
            ]
        )

        assert not check.is_balanced
        assert check.difference == Decimal("10.00")

    def test_sub_cent_difference_is_balanced(self, ledger, accounts):
        check = ledger.validate_balance(
            [
                LineSpec.debit(accounts["1000"].id, Decimal("100.004"), "USD"),
                LineSpec.credit(accounts["4000"].id, Decimal("100.00"), "USD"),
            ]
        )

        assert check.is_balanced

    def test_logs_rejection(self, ledger, tenant_id, actor_id, accounts, captured_logs):
        with pytest.raises(UnbalancedError):
            ledger.post_transaction(
                tenant_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("100.00"), "USD"),
                    LineSpec.credit(accounts["4000"].id, Decimal("90.00"), "USD"),
                ],
                JAN_15,
                actor_id,
            )

        rejected = [r for r in captured_logs() if r["message"] == "unbalanced_transaction_rejected"]
        assert rejected[0]["difference"] == "10.00"


class TestLineValidation:
    def _post(self, ledger, tenant_id, actor_id, lines, metadata=JAN_15):
        return ledger.post_transaction(tenant_id, lines, metadata, actor_id)

    def test_single_line_rejected(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(EmptyTransactionError):
            self._post(ledger, tenant_id, actor_id, [LineSpec.debit(accounts["1000"].id, Decimal("1"), "USD")])

    def test_missing_credit_side(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(MissingSideError) as exc_info:
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("1"), "USD"),
                    LineSpec.debit(accounts["5000"].id, Decimal("1"), "USD"),
                ],
            )

        assert exc_info.value.missing_side == EntrySide.CREDIT.value

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    def test_non_positive_amount(self, ledger, tenant_id, actor_id, accounts, amount):
        with pytest.raises(InvalidAmountError):
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, amount, "USD"),
                    LineSpec.credit(accounts["4000"].id, amount, "USD"),
                ],
            )

    def test_float_amount_rejected(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(InvalidAmountError):
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, 10.0, "USD"),
                    LineSpec.credit(accounts["4000"].id, 10.0, "USD"),
                ],
            )

    def test_zero_exchange_rate(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(InvalidAmountError) as exc_info:
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("10"), "EUR", exchange_rate=Decimal("0")),
                    LineSpec.credit(accounts["4000"].id, Decimal("10"), "USD"),
                ],
            )

        assert exc_info.value.field == "exchange_rate"

    def test_base_currency_line_requires_unit_rate(self, ledger, session, tenant_id, actor_id, accounts):
        with pytest.raises(BaseCurrencyRateError) as exc_info:
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("100.00"), "USD", exchange_rate=Decimal("1.10")),
                    LineSpec.credit(accounts["4000"].id, Decimal("110.00"), "USD"),
                ],
            )

        assert exc_info.value.code == "BASE_CURRENCY_RATE"
        assert session.query(Transaction).count() == 0

    def test_single_account_rejected(self, ledger, session, tenant_id, actor_id, accounts):
        with pytest.raises(SingleAccountTransactionError) as exc_info:
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("25.00"), "USD"),
                    LineSpec.credit(accounts["1000"].id, Decimal("25.00"), "USD"),
                ],
            )

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.account_id == str(accounts["1000"].id)
        assert session.query(Transaction).count() == 0

    def test_unknown_currency(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(InvalidCurrencyError):
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("10"), "ABC"),
                    LineSpec.credit(accounts["4000"].id, Decimal("10"), "ABC"),
                ],
            )

    def test_unknown_account(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(AccountNotFoundError):
            self._post(
                ledger,
                tenant_id,
                actor_id,
                [
                    LineSpec.debit(uuid4(), Decimal("10"), "USD"),
                    LineSpec.credit(accounts["4000"].id, Decimal("10"), "USD"),
                ],
            )

    def test_account_of_other_tenant(self, ledger, other_tenant_id, actor_id, accounts):
        with pytest.raises(AccountNotFoundError):
            self._post(
                ledger,
                other_tenant_id,
                actor_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("10"), "USD"),
                    LineSpec.credit(accounts["4000"].id, Decimal("10"), "USD"),
                ],
            )


class TestControlAccounts:
    def test_manual_journal_to_control_account_rejected(self, tenant_id, accounts, post_journal):
        with pytest.raises(ControlAccountError) as exc_info:
            post_journal("1200", "4000", "50.00")

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.account_code == "1200"

    def test_non_journal_type_may_use_control_account(self, ledger, tenant_id, actor_id, accounts):
        txn = ledger.post_transaction(
            tenant_id,
            [
                LineSpec.debit(accounts["1200"].id, Decimal("50.00"), "USD"),
                LineSpec.credit(accounts["4000"].id, Decimal("50.00"), "USD"),
            ],
            TransactionMetadata(date(2024, 1, 15), "Invoice", TransactionType.PAYMENT),
            actor_id,
        )

        assert txn.is_posted


class TestMultiCurrency:
    def test_base_amount_uses_supplied_rate(self, ledger, tenant_id, actor_id, accounts):
        txn = ledger.post_transaction(
            tenant_id,
            [
                LineSpec.debit(accounts["1000"].id, Decimal("100.00"), "EUR", exchange_rate=Decimal("1.085")),
                LineSpec.credit(accounts["4000"].id, Decimal("108.50"), "USD"),
            ],
            JAN_15,
            actor_id,
        )

        eur_line = txn.entries[0]
        assert eur_line.currency == "EUR"
        assert eur_line.amount == Decimal("100.00")
        assert eur_line.exchange_rate == Decimal("1.085")
        assert eur_line.base_amount == Decimal("108.50")
        assert ledger.get_account(tenant_id, accounts["1000"].id).balance == Decimal("108.50")

    def test_imbalance_measured_in_base_currency(self, ledger, tenant_id, actor_id, accounts):
        with pytest.raises(UnbalancedError) as exc_info:
            ledger.post_transaction(
                tenant_id,
                [
                    LineSpec.debit(accounts["1000"].id, Decimal("100.00"), "EUR", exchange_rate=Decimal("1.10")),
                    LineSpec.credit(accounts["4000"].id, Decimal("100.00"), "USD"),
                ],
                JAN_15,
                actor_id,
            )

        assert exc_info.value.difference == Decimal("10.00")


class TestReferenceNumbers:
    def test_sequential_within_month(self, post_journal):
        first = post_journal("1000", "4000", "1.00", transaction_date=date(2024, 1, 2))
        second = post_journal("1000", "4000", "1.00", transaction_date=date(2024, 1, 30))

        assert first.reference_number == "JE-2024-01-0001"
        assert second.reference_number == "JE-2024-01-0002"

    def test_restarts_each_month(self, post_journal):
        post_journal("1000", "4000", "1.00", transaction_date=date(2024, 1, 2))
        feb = post_journal("1000", "4000", "1.00", transaction_date=date(2024, 2, 1))

        assert feb.reference_number == "JE-2024-02-0001"

    def test_independent_per_tenant(self, ledger, other_tenant_id, actor_id, post_journal):
        post_journal("1000", "4000", "1.00")
        cash = ledger.create_account(other_tenant_id, "1000", "Cash", "asset", actor_id)
        sales = ledger.create_account(other_tenant_id, "4000", "Sales", "revenue", actor_id)

        txn = ledger.post_transaction(
            other_tenant_id,
            [LineSpec.debit(cash.id, Decimal("1"), "USD"), LineSpec.credit(sales.id, Decimal("1"), "USD")],
            JAN_15,
            actor_id,
        )

        assert txn.reference_number == "JE-2024-01-0001"

    def test_get_transaction_scoped_by_tenant(self, ledger, tenant_id, other_tenant_id, post_journal):
        txn = post_journal("1000", "4000", "1.00")

        assert ledger.get_transaction(tenant_id, txn.id).id == txn.id
        with pytest.raises(TransactionNotFoundError):
            ledger.get_transaction(other_tenant_id, txn.id)
