"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Money pairs a Decimal amount with its ISO 4217 currency; ExchangeRate
    converts Money into the organization's base currency.  Every balance
    comparison in the ledger runs on these types so the balance check is
    exact decimal arithmetic, never float.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - ValueError on invalid amounts, currencies, or rates.
    - ValueError when arithmetic mixes different currencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ledger_kernel.domain.currency import CurrencyRegistry


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Guarantees:
        - amount is always a Decimal (never float).
        - currency is always a normalized ISO 4217 code.
        - Arithmetic refuses to mix currencies.

    Non-goals:
        - Does NOT auto-round -- callers must explicitly call .round().
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if isinstance(self.amount, float):
            raise ValueError(f"Money amount must not be float: {self.amount!r}")
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount: {self.amount}") from e
        object.__setattr__(self, "currency", CurrencyRegistry.validate(self.currency))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str) -> Money:
        """Factory method for creating Money."""
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        """Create a zero amount in the given currency."""
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's ISO 4217 decimal places."""
        quantizer = Decimal(1).scaleb(-self.decimal_places)
        return Money(self.amount.quantize(quantizer, rounding=rounding), self.currency)

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """
    Conversion rate from one currency into another.

    The ledger never looks rates up: callers supply the rate per line and it
    is stored with the line, so history is never re-derived.
    """

    from_currency: str
    to_currency: str
    rate: Decimal

    def __post_init__(self) -> None:
        if isinstance(self.rate, float):
            raise ValueError(f"Exchange rate must not be float: {self.rate!r}")
        if not isinstance(self.rate, Decimal):
            object.__setattr__(self, "rate", Decimal(str(self.rate)))
        if self.rate <= 0:
            raise ValueError(f"Exchange rate must be positive: {self.rate}")
        object.__setattr__(self, "from_currency", CurrencyRegistry.validate(self.from_currency))
        object.__setattr__(self, "to_currency", CurrencyRegistry.validate(self.to_currency))

    def convert(self, money: Money) -> Money:
        """Convert Money in from_currency to to_currency (unrounded)."""
        if money.currency != self.from_currency:
            raise ValueError(
                f"Cannot convert {money.currency} with a "
                f"{self.from_currency}->{self.to_currency} rate"
            )
        return Money(money.amount * self.rate, self.to_currency)
