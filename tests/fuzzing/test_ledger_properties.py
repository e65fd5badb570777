"""
Property-based tests for the ledger and reconciliation invariants.

Properties:
- Any sequence of accepted postings leaves the trial balance balanced, and
  every stored account balance equals the sum of its posted entries.
- The reconciliation gap depends only on the cleared set: order and
  duplicates do not matter, and clearing then un-clearing restores it.
- The gap difference is opening + sum(signed cleared amounts) - statement.
- Auto-match selection never uses an item twice and respects the threshold.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ledger_engines.matching import MAX_CONFIDENCE, MatchSuggestionEngine
from ledger_engines.reconciliation import ClearableItem, compute_gap
from ledger_kernel.domain.dtos import ClearableItemType, ItemDirection, LineSpec, TransactionMetadata

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
balances = st.decimals(
    min_value=Decimal("-1000000"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
directions = st.sampled_from(list(ItemDirection))
item_types = st.sampled_from(list(ClearableItemType))

POSTABLE_CODES = ["1000", "1100", "3000", "4000", "4100", "5000", "5100", "5200"]


@st.composite
def clearable_items(draw, item_type=None):
    return ClearableItem(
        item_id=uuid4(),
        item_type=item_type or draw(item_types),
        item_date=date(2024, 1, 1) + timedelta(days=draw(st.integers(0, 30))),
        amount=draw(amounts),
        direction=draw(directions),
        reference=draw(st.sampled_from([None, "INV-1", "inv-1", "CHQ-9"])),
        payee=draw(st.sampled_from([None, "Acme", "Globex"])),
        description=draw(st.sampled_from([None, "ACME transfer", "fee"])),
    )


class TestGapProperties:
    @given(opening=balances, statement=balances, items=st.lists(clearable_items(), max_size=20))
    @settings(max_examples=200)
    def test_difference_formula(self, opening, statement, items):
        gap = compute_gap(opening, statement, items)

        assert gap.difference == opening + sum((i.signed_amount for i in items), Decimal("0")) - statement
        assert gap.is_balanced == (gap.difference == 0)

    @given(
        opening=balances,
        statement=balances,
        items=st.lists(clearable_items(), min_size=1, max_size=20),
        data=st.data(),
    )
    @settings(max_examples=200)
    def test_order_and_duplicates_irrelevant(self, opening, statement, items, data):
        shuffled = data.draw(st.permutations(items))
        repeated = shuffled + data.draw(st.lists(st.sampled_from(items), max_size=5))

        assert compute_gap(opening, statement, repeated) == compute_gap(opening, statement, items)

    @given(
        opening=balances,
        statement=balances,
        cleared=st.lists(clearable_items(), max_size=10),
        toggled=clearable_items(),
    )
    @settings(max_examples=200)
    def test_clear_then_unclear_restores_gap(self, opening, statement, cleared, toggled):
        before = compute_gap(opening, statement, cleared)
        during = compute_gap(opening, statement, cleared + [toggled])
        after = compute_gap(opening, statement, [i for i in cleared + [toggled] if i.key != toggled.key])

        assert during.difference - before.difference == toggled.signed_amount
        assert after == before


class TestMatchingProperties:
    @given(
        payments=st.lists(clearable_items(ClearableItemType.PAYMENT), max_size=8),
        bank_items=st.lists(clearable_items(ClearableItemType.BANK_TXN), max_size=8),
        threshold=st.integers(0, 100),
    )
    @settings(max_examples=200)
    def test_auto_selection_is_one_to_one(self, payments, bank_items, threshold):
        engine = MatchSuggestionEngine()
        suggestions = engine.suggest(payments=payments, bank_items=bank_items)
        chosen = engine.select_auto_matches(suggestions, threshold)

        assert all(0 <= s.confidence <= MAX_CONFIDENCE for s in suggestions)
        assert [s.confidence for s in suggestions] == sorted((s.confidence for s in suggestions), reverse=True)
        assert all(s.confidence >= threshold for s in chosen)
        assert len({s.payment_id for s in chosen}) == len(chosen)
        assert len({s.bank_transaction_id for s in chosen}) == len(chosen)
        assert engine.suggest(payments=payments, bank_items=bank_items) == suggestions


@st.composite
def balanced_lines(draw):
    """One credit line balancing one to five debit lines on distinct accounts."""
    codes = draw(st.lists(st.sampled_from(POSTABLE_CODES), min_size=2, max_size=6, unique=True))
    debits = [(code, draw(amounts)) for code in codes[1:]]
    return codes[0], debits


class TestPostingProperties:
    @given(batches=st.lists(balanced_lines(), min_size=1, max_size=5))
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_trial_balance_stays_balanced(self, ledger, tenant_id, actor_id, accounts, batches):
        for credit_code, debits in batches:
            lines = [LineSpec.debit(accounts[code].id, amount, "USD") for code, amount in debits]
            total = sum((amount for _, amount in debits), Decimal("0"))
            lines.append(LineSpec.credit(accounts[credit_code].id, total, "USD"))
            ledger.post_transaction(
                tenant_id, lines, TransactionMetadata(date(2024, 1, 15), "Generated"), actor_id
            )

        trial = ledger.trial_balance(tenant_id)
        assert trial.total_debits == trial.total_credits
        for code in POSTABLE_CODES:
            account = ledger.get_account(tenant_id, accounts[code].id)
            assert account.balance == ledger.account_balance(tenant_id, account.id)
