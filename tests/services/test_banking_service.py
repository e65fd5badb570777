"""
Tests for bank accounts, book-side payments and bank feed rows.

Covers:
- Bank accounts must sit on an ASSET account of the chart
- record_payment posts to the ledger in the right direction
- Feed import is idempotent by external id
- Feed corrections are refused for cleared or locked rows
- Foreign-currency bank accounts post at the supplied exchange rate
- Bank lines carrying a posted adjustment are never edited or deleted
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import (
    AccountType,
    ClearableItemType,
    EntrySide,
    ItemDirection,
    TransactionType,
)
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    BankAccountNotFoundError,
    ClearableItemNotFoundError,
    InvalidAmountError,
    ItemClearedInSessionError,
    ItemLockedError,
    ItemPostedError,
    MissingExchangeRateError,
    ValidationError,
)
from ledger_kernel.models.banking import BankTransaction
from ledger_services.banking_service import FeedRow

STATEMENT_DATE = date(2024, 1, 31)


def feed_row(external_id, amount="50.00", direction=ItemDirection.DEPOSIT, day=20):
    return FeedRow(external_id, date(2024, 1, day), Decimal(amount), direction)


class TestBankAccounts:
    def test_create_on_asset_account(self, banking, tenant_id, bank_account, accounts):
        assert bank_account.gl_account_id == accounts["1100"].id
        assert bank_account.currency == "USD"
        assert bank_account.carried_balance == Decimal("1000.00")
        assert [b.id for b in banking.list_bank_accounts(tenant_id)] == [bank_account.id]

    def test_non_asset_gl_account_rejected(self, banking, tenant_id, actor_id, accounts):
        with pytest.raises(ValidationError):
            banking.create_bank_account(tenant_id, "Card", accounts["2000"].id, actor_id)

    def test_unknown_gl_account_rejected(self, banking, tenant_id, actor_id, accounts):
        with pytest.raises(AccountNotFoundError):
            banking.create_bank_account(tenant_id, "Ghost", uuid4(), actor_id)

    def test_other_tenant_cannot_read(self, banking, other_tenant_id, bank_account):
        with pytest.raises(BankAccountNotFoundError):
            banking.get_bank_account(other_tenant_id, bank_account.id)
        assert banking.list_bank_accounts(other_tenant_id) == []


class TestRecordPayment:
    def test_deposit_debits_bank_gl(self, banking, ledger, tenant_id, actor_id, accounts, bank_account):
        payment = banking.record_payment(
            tenant_id, bank_account.id, date(2024, 1, 10), Decimal("500.00"),
            ItemDirection.DEPOSIT, accounts["4000"].id, actor_id, reference="INV-1001",
        )

        txn = ledger.get_transaction(tenant_id, payment.transaction_id)
        assert txn.transaction_type == TransactionType.PAYMENT
        assert txn.reference == "INV-1001"
        assert [(e.account_id, EntrySide(e.side)) for e in txn.entries] == [
            (accounts["1100"].id, EntrySide.DEBIT),
            (accounts["4000"].id, EntrySide.CREDIT),
        ]
        assert banking.book_balance(tenant_id, bank_account.id) == Decimal("500.00")

    def test_withdrawal_credits_bank_gl(self, banking, tenant_id, actor_id, accounts, bank_account):
        banking.record_payment(
            tenant_id, bank_account.id, date(2024, 1, 10), Decimal("500.00"),
            ItemDirection.DEPOSIT, accounts["4000"].id, actor_id,
        )
        banking.record_payment(
            tenant_id, bank_account.id, date(2024, 1, 12), Decimal("200.00"),
            "withdrawal", accounts["5000"].id, actor_id,
        )

        assert banking.book_balance(tenant_id, bank_account.id) == Decimal("300.00")
        assert banking.book_balance(tenant_id, bank_account.id, as_of=date(2024, 1, 11)) == Decimal("500.00")

    def test_payment_may_use_control_account(self, banking, ledger, tenant_id, actor_id, accounts, bank_account):
        banking.record_payment(
            tenant_id, bank_account.id, date(2024, 1, 10), Decimal("80.00"),
            ItemDirection.DEPOSIT, accounts["1200"].id, actor_id,
        )

        assert ledger.account_balance(tenant_id, accounts["1200"].id) == Decimal("-80.00")

    def test_non_positive_amount_rejected(self, banking, tenant_id, actor_id, accounts, bank_account):
        with pytest.raises(InvalidAmountError):
            banking.record_payment(
                tenant_id, bank_account.id, date(2024, 1, 10), Decimal("-5"),
                ItemDirection.DEPOSIT, accounts["4000"].id, actor_id,
            )


class TestForeignCurrencyBankAccount:
    @pytest.fixture
    def eur_bank_account(self, banking, ledger, tenant_id, actor_id):
        gl = ledger.create_account(
            tenant_id, "1150", "Euro Bank", AccountType.ASSET, actor_id, currency="EUR"
        )
        return banking.create_bank_account(tenant_id, "Euro Operating", gl.id, actor_id)

    def test_deposit_valued_at_supplied_rate(
        self, banking, ledger, tenant_id, actor_id, accounts, eur_bank_account
    ):
        payment = banking.record_payment(
            tenant_id, eur_bank_account.id, date(2024, 1, 10), Decimal("100.00"),
            ItemDirection.DEPOSIT, accounts["4000"].id, actor_id,
            exchange_rate=Decimal("1.10"),
        )

        txn = ledger.get_transaction(tenant_id, payment.transaction_id)
        assert [(e.currency, e.amount, e.exchange_rate, e.base_amount) for e in txn.entries] == [
            ("EUR", Decimal("100.00"), Decimal("1.10"), Decimal("110.00")),
            ("EUR", Decimal("100.00"), Decimal("1.10"), Decimal("110.00")),
        ]
        assert payment.amount == Decimal("100.00")
        assert banking.book_balance(tenant_id, eur_bank_account.id) == Decimal("110.00")

    def test_missing_rate_rejected(
        self, banking, tenant_id, actor_id, accounts, eur_bank_account
    ):
        with pytest.raises(MissingExchangeRateError) as exc_info:
            banking.record_payment(
                tenant_id, eur_bank_account.id, date(2024, 1, 10), Decimal("100.00"),
                ItemDirection.DEPOSIT, accounts["4000"].id, actor_id,
            )

        assert exc_info.value.code == "MISSING_EXCHANGE_RATE"
        assert banking.book_balance(tenant_id, eur_bank_account.id) == Decimal("0")

    def test_non_positive_rate_rejected(self, banking, tenant_id, actor_id, accounts, eur_bank_account):
        with pytest.raises(InvalidAmountError) as exc_info:
            banking.record_payment(
                tenant_id, eur_bank_account.id, date(2024, 1, 10), Decimal("100.00"),
                ItemDirection.DEPOSIT, accounts["4000"].id, actor_id,
                exchange_rate=Decimal("0"),
            )

        assert exc_info.value.field == "exchange_rate"

    def test_base_currency_account_defaults_to_rate_one(
        self, banking, ledger, tenant_id, actor_id, accounts, bank_account
    ):
        payment = banking.record_payment(
            tenant_id, bank_account.id, date(2024, 1, 10), Decimal("40.00"),
            ItemDirection.WITHDRAWAL, accounts["5000"].id, actor_id,
        )

        txn = ledger.get_transaction(tenant_id, payment.transaction_id)
        assert {e.exchange_rate for e in txn.entries} == {Decimal("1")}


class TestFeedImport:
    def test_import_skips_known_external_ids(self, banking, session, tenant_id, actor_id, bank_account):
        first = banking.import_feed(tenant_id, bank_account.id, [feed_row("a"), feed_row("b")], actor_id)
        second = banking.import_feed(
            tenant_id, bank_account.id, [feed_row("b"), feed_row("c"), feed_row("c")], actor_id
        )

        assert [t.external_id for t in first] == ["a", "b"]
        assert [t.external_id for t in second] == ["c"]
        assert session.query(BankTransaction).count() == 3

    def test_import_logged(self, banking, tenant_id, actor_id, bank_account, captured_logs):
        banking.import_feed(tenant_id, bank_account.id, [feed_row("a"), feed_row("a")], actor_id)

        imported = [r for r in captured_logs() if r["message"] == "bank_feed_imported"]
        assert imported[0]["created"] == 1
        assert imported[0]["skipped"] == 1


class TestFeedCorrections:
    @pytest.fixture
    def row(self, banking, tenant_id, actor_id, bank_account):
        [row] = banking.import_feed(tenant_id, bank_account.id, [feed_row("a")], actor_id)
        return row

    @pytest.fixture
    def recon(self, reconciliation, tenant_id, actor_id, bank_account):
        return reconciliation.start_session(
            tenant_id, bank_account.id, STATEMENT_DATE, Decimal("1050.00"), actor_id
        )

    def test_uncleared_row_can_be_corrected(self, banking, tenant_id, actor_id, row, recon):
        updated = banking.update_feed_item(tenant_id, row.id, actor_id, amount=Decimal("55.00"), reference="X1")

        assert updated.amount == Decimal("55.00")
        assert updated.reference == "X1"

    def test_only_statement_fields_editable(self, banking, tenant_id, actor_id, row):
        with pytest.raises(ValidationError):
            banking.update_feed_item(tenant_id, row.id, actor_id, bank_account_id=uuid4())

    def test_cleared_row_guarded(self, banking, reconciliation, tenant_id, actor_id, row, recon):
        reconciliation.toggle_clear(tenant_id, recon.id, row.id, ClearableItemType.BANK_TXN, True, actor_id)

        with pytest.raises(ItemClearedInSessionError) as exc_info:
            banking.update_feed_item(tenant_id, row.id, actor_id, description="edited")
        assert exc_info.value.reconciliation_id == str(recon.id)

    def test_locked_row_guarded(self, banking, reconciliation, tenant_id, actor_id, row, recon):
        reconciliation.toggle_clear(tenant_id, recon.id, row.id, ClearableItemType.BANK_TXN, True, actor_id)
        reconciliation.finalize(tenant_id, recon.id, actor_id)

        with pytest.raises(ItemLockedError):
            banking.update_feed_item(tenant_id, row.id, actor_id, amount=Decimal("1.00"))
        with pytest.raises(ItemLockedError):
            banking.delete_feed_item(tenant_id, row.id)

    def test_delete_uncleared_row(self, banking, tenant_id, actor_id, row):
        banking.delete_feed_item(tenant_id, row.id)

        with pytest.raises(ClearableItemNotFoundError):
            banking.delete_feed_item(tenant_id, row.id)

    def test_adjustment_line_guarded_after_unclear(
        self, banking, adjustments, reconciliation, session, tenant_id, actor_id, accounts, recon
    ):
        txn = adjustments.post_adjustment(
            tenant_id, recon.id, date(2024, 1, 31), Decimal("10.00"), "Service fee",
            accounts["5100"].id, accounts["1100"].id, actor_id,
        )
        line = session.query(BankTransaction).filter_by(transaction_id=txn.id).one()
        reconciliation.toggle_clear(tenant_id, recon.id, line.id, ClearableItemType.BANK_TXN, False, actor_id)

        with pytest.raises(ItemPostedError) as exc_info:
            banking.delete_feed_item(tenant_id, line.id)
        assert exc_info.value.transaction_id == str(txn.id)
        assert "reversing entry" in str(exc_info.value)
        with pytest.raises(ItemPostedError):
            banking.update_feed_item(tenant_id, line.id, actor_id, amount=Decimal("1.00"))

        assert session.get(BankTransaction, line.id).amount == Decimal("10.00")

    def test_feed_row_linked_to_adjustment_guarded(
        self, banking, adjustments, reconciliation, tenant_id, actor_id, accounts, row, recon
    ):
        txn = adjustments.post_adjustment(
            tenant_id, recon.id, date(2024, 1, 20), Decimal("50.00"), "Interest",
            accounts["4100"].id, accounts["1100"].id, actor_id,
            adjustment_type="interest", bank_transaction_id=row.id,
        )
        reconciliation.toggle_clear(tenant_id, recon.id, row.id, ClearableItemType.BANK_TXN, False, actor_id)

        with pytest.raises(ItemPostedError) as exc_info:
            banking.update_feed_item(tenant_id, row.id, actor_id, description="edited")
        assert exc_info.value.transaction_id == str(txn.id)
        with pytest.raises(ItemPostedError):
            banking.delete_feed_item(tenant_id, row.id)
