"""
Module: ledger_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Invariants enforced:
    - Selectors MUST NOT add, delete, flush or commit.
    - Balances are derived from LedgerEntry rows of POSTED transactions,
      never from the cached Account.balance column.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session
