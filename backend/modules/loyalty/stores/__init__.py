# backend/modules/loyalty/stores/__init__.py

from .memory_store import InMemoryLedgerStore
from .sqlalchemy_store import SQLAlchemyLedgerStore, is_retryable_error

__all__ = ["InMemoryLedgerStore", "SQLAlchemyLedgerStore", "is_retryable_error"]
