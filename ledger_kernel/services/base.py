"""
BaseService -- abstract base for all kernel services.

Kernel services receive a SQLAlchemy ``Session`` and use ``session.flush()``
only -- never ``commit()`` or ``rollback()``.  The caller (a facade in
``ledger_services`` or a test) owns the unit of work, which is what lets an
adjustment post and the clearing of its bank line commit together.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
