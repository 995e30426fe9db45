# backend/modules/loyalty/__init__.py

"""
Loyalty points, tier progression and achievements.
"""

from .routes.loyalty_routes import router as loyalty_router
from .models.loyalty_models import (
    LedgerEntryType, LoyaltyAccount, LoyaltyLedgerEntry,
    LedgerExpirationOffset, UnlockedAchievement
)
from .exceptions import InsufficientPoints, InvalidAmount, InvalidEvent, TransactionFailure
from .services.loyalty_engine import LoyaltyEngine, create_loyalty_engine, get_loyalty_engine

__all__ = [
    "loyalty_router",
    "LedgerEntryType",
    "LoyaltyAccount",
    "LoyaltyLedgerEntry",
    "LedgerExpirationOffset",
    "UnlockedAchievement",
    "InsufficientPoints",
    "InvalidAmount",
    "InvalidEvent",
    "TransactionFailure",
    "LoyaltyEngine",
    "create_loyalty_engine",
    "get_loyalty_engine",
]
