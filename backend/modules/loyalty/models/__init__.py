# backend/modules/loyalty/models/__init__.py

from .loyalty_models import (
    LedgerEntryType,
    EXPIRING_ENTRY_TYPES,
    MAX_POINTS_VALUE,
    LoyaltyAccount,
    LoyaltyLedgerEntry,
    LedgerExpirationOffset,
    UnlockedAchievement,
)

__all__ = [
    "LedgerEntryType",
    "EXPIRING_ENTRY_TYPES",
    "MAX_POINTS_VALUE",
    "LoyaltyAccount",
    "LoyaltyLedgerEntry",
    "LedgerExpirationOffset",
    "UnlockedAchievement",
]
