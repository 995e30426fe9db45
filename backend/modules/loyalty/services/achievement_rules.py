# backend/modules/loyalty/services/achievement_rules.py

"""
Trigger predicates for achievements.

Each builder takes the ``condition`` parameters of an achievement and
returns a pure predicate over the typed event and the live lookups.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from ..events import (
    Anniversary,
    BookingCompleted,
    BookingMilestone,
    LoyaltyEvent,
    SocialShare,
    SpendingMilestone,
    TierAchieved,
)
from .tier_catalog import TierCatalog


@dataclass(frozen=True)
class AchievementContext:
    """Live state read inside the unlock transaction"""

    user_id: str
    points_balance: int
    lifetime_spent: Decimal
    tenure_days: int
    current_tier: str
    completed_bookings: Optional[int] = None


TriggerCondition = Callable[[LoyaltyEvent, AchievementContext], bool]


def _booking_completed(condition: Mapping[str, Any], catalog: TierCatalog) -> TriggerCondition:
    minimum = int(condition.get("min_completed_bookings", 1))

    def predicate(event: BookingCompleted, context: AchievementContext) -> bool:
        # Without a booking history the event itself proves one completed booking
        completed = context.completed_bookings if context.completed_bookings is not None else 1
        return completed >= minimum

    return predicate


def _booking_milestone(condition: Mapping[str, Any], catalog: TierCatalog) -> TriggerCondition:
    minimum = int(condition["min_total_bookings"])

    def predicate(event: BookingMilestone, context: AchievementContext) -> bool:
        # A booking history, when wired, overrides the reported count
        if context.completed_bookings is not None:
            return context.completed_bookings >= minimum
        return event.total_bookings >= minimum

    return predicate


# The predicates below require the reported value and the account's own
# ledger state to both meet the condition.


def _tier_achieved(condition: Mapping[str, Any], catalog: TierCatalog) -> TriggerCondition:
    minimum_rank = catalog.rank(condition["min_tier"])

    def predicate(event: TierAchieved, context: AchievementContext) -> bool:
        return (
            catalog.rank(event.tier) >= minimum_rank
            and catalog.rank(context.current_tier) >= minimum_rank
        )

    return predicate


def _spending_milestone(condition: Mapping[str, Any], catalog: TierCatalog) -> TriggerCondition:
    minimum = Decimal(str(condition["min_total_spent"]))

    def predicate(event: SpendingMilestone, context: AchievementContext) -> bool:
        return event.total_spent >= minimum and context.lifetime_spent >= minimum

    return predicate


def _anniversary(condition: Mapping[str, Any], catalog: TierCatalog) -> TriggerCondition:
    minimum = int(condition["min_days"])

    def predicate(event: Anniversary, context: AchievementContext) -> bool:
        return event.days_since_join >= minimum and context.tenure_days >= minimum

    return predicate


def _social_share(condition: Mapping[str, Any], catalog: TierCatalog) -> TriggerCondition:
    platforms = condition.get("platforms")

    def predicate(event: SocialShare, context: AchievementContext) -> bool:
        return not platforms or event.platform.lower() in platforms

    return predicate


TRIGGER_BUILDERS: Dict[str, Callable[[Mapping[str, Any], TierCatalog], TriggerCondition]] = {
    BookingCompleted.event_type: _booking_completed,
    BookingMilestone.event_type: _booking_milestone,
    TierAchieved.event_type: _tier_achieved,
    SpendingMilestone.event_type: _spending_milestone,
    Anniversary.event_type: _anniversary,
    SocialShare.event_type: _social_share,
}


def build_trigger(
    event_type: str, condition: Mapping[str, Any], catalog: TierCatalog
) -> TriggerCondition:
    try:
        builder = TRIGGER_BUILDERS[event_type]
    except KeyError:
        raise ValueError(f"No achievement trigger for event type '{event_type}'")
    return builder(condition, catalog)
