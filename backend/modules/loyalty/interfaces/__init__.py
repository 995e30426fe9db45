# backend/modules/loyalty/interfaces/__init__.py

from .ledger_store import AccountSnapshot, AccountTransaction, LedgerStore
from .booking_history import BookingHistory

__all__ = ["AccountSnapshot", "AccountTransaction", "LedgerStore", "BookingHistory"]
