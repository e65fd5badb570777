"""
Module: ledger_kernel.db.types
Responsibility: Financial-grade column types. Rounding of money lives on
    ledger_kernel.domain.values.Money.
Architecture position: Kernel > DB.  Imported by db/base.py, models/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  ExactDecimal round-trips Decimal values exactly on
      every supported backend: PostgreSQL stores NUMERIC(38, 9); backends
      without a native decimal type (SQLite) store the canonical string.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 9


class ExactDecimal(TypeDecorator):
    """
    Decimal column stored without loss of precision.

    Contract:
        Values bound are Decimal (or int / str convertible to Decimal);
        values loaded are always Decimal.  Floats are rejected.
    """

    impl = Numeric(38, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(38, MONEY_DECIMAL_PLACES))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("ExactDecimal does not accept float values")
        value = Decimal(value)
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
