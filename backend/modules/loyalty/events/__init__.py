"""
Loyalty domain events consumed by the achievement engine.
"""

from .loyalty_events import (
    LoyaltyEvent,
    BookingCompleted,
    BookingMilestone,
    TierAchieved,
    SpendingMilestone,
    Anniversary,
    SocialShare,
    EVENT_TYPES,
    parse_event,
    coerce_event,
)

__all__ = [
    "LoyaltyEvent",
    "BookingCompleted",
    "BookingMilestone",
    "TierAchieved",
    "SpendingMilestone",
    "Anniversary",
    "SocialShare",
    "EVENT_TYPES",
    "parse_event",
    "coerce_event",
]
