"""
Tests for Money, ExchangeRate and the currency registry.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.domain.values import ExchangeRate, Money


class TestMoney:
    def test_string_amount_becomes_decimal(self):
        money = Money.of("10.10", "usd")

        assert money.amount == Decimal("10.10")
        assert money.currency == "USD"

    def test_float_rejected(self):
        with pytest.raises(ValueError):
            Money(10.1, "USD")

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValueError):
            Money.of("1", "ABC")

    def test_arithmetic_is_exact(self):
        total = Money.of("0.10", "USD") + Money.of("0.20", "USD") - Money.of("0.30", "USD")

        assert total.is_zero

    def test_mixed_currencies_rejected(self):
        with pytest.raises(ValueError, match="different currencies"):
            Money.of("1", "USD") + Money.of("1", "EUR")

    @pytest.mark.parametrize(
        "amount, currency, expected",
        [
            ("1.005", "USD", Decimal("1.01")),
            ("1.5", "JPY", Decimal("2")),
            ("1.2345", "KWD", Decimal("1.235")),
        ],
    )
    def test_round_to_minor_unit(self, amount, currency, expected):
        assert Money.of(amount, currency).round().amount == expected


class TestExchangeRate:
    def test_convert(self):
        rate = ExchangeRate("EUR", "USD", Decimal("1.10"))

        assert rate.convert(Money.of("100.00", "EUR")) == Money.of("110.0000", "USD")

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1.2")])
    def test_non_positive_rate_rejected(self, rate):
        with pytest.raises(ValueError):
            ExchangeRate("EUR", "USD", rate)

    def test_wrong_source_currency_rejected(self):
        with pytest.raises(ValueError):
            ExchangeRate("EUR", "USD", Decimal("1.1")).convert(Money.of("1", "GBP"))


class TestLineSpec:
    def test_base_amount_rounded(self):
        line = LineSpec.debit(uuid4(), Decimal("33.33"), "EUR", exchange_rate=Decimal("1.0853"))

        assert line.base_amount("USD") == Money.of("36.17", "USD")


class TestCurrencyRegistry:
    def test_decimal_places(self):
        assert CurrencyRegistry.get_decimal_places("JPY") == 0
        assert CurrencyRegistry.get_decimal_places("usd") == 2

    def test_validate_normalizes(self):
        assert CurrencyRegistry.validate(" gbp ") == "GBP"
        assert not CurrencyRegistry.is_valid("")
