# backend/modules/loyalty/services/achievement_engine.py

"""
Unlocks achievements from loyalty events and pays their bonus points.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..data.default_achievements import DEFAULT_ACHIEVEMENTS
from ..events import (
    EVENT_TYPES,
    BookingCompleted,
    BookingMilestone,
    TierAchieved,
    coerce_event,
)
from ..exceptions import InvalidEvent
from ..interfaces import AccountTransaction, BookingHistory, LedgerStore
from ..models import LedgerEntryType, UnlockedAchievement
from .achievement_rules import AchievementContext, TriggerCondition, build_trigger
from .points_engine import PointsEngine
from .tier_catalog import TierCatalog

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AchievementRarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


@dataclass(frozen=True)
class AchievementDefinition:
    achievement_id: str
    title: str
    description: str
    event_type: str
    trigger_condition: TriggerCondition
    reward_points: int
    rarity: AchievementRarity


def load_achievements(
    catalog: TierCatalog, definitions: Sequence[Mapping[str, Any]] = DEFAULT_ACHIEVEMENTS
) -> List[AchievementDefinition]:
    """Build achievement definitions from their configuration rows"""
    achievements = []
    seen = set()
    for row in definitions:
        if row["achievement_id"] in seen:
            raise ValueError(f"Duplicate achievement id: {row['achievement_id']}")
        if row["event_type"] not in EVENT_TYPES:
            raise ValueError(
                f"Achievement {row['achievement_id']} uses unknown event type {row['event_type']}"
            )
        seen.add(row["achievement_id"])
        achievements.append(
            AchievementDefinition(
                achievement_id=row["achievement_id"],
                title=row["title"],
                description=row["description"],
                event_type=row["event_type"],
                trigger_condition=build_trigger(row["event_type"], row.get("condition", {}), catalog),
                reward_points=int(row["reward_points"]),
                rarity=AchievementRarity(row["rarity"]),
            )
        )
    return achievements


class AchievementEngine:
    """
    Evaluates achievements bound to an event type and unlocks the newly
    satisfied ones.

    The unlock row and its bonus entry are written in the same transaction.
    The unique (user, achievement) key makes a repeated or concurrent
    trigger a silent no-op, so the bonus is paid exactly once.
    """

    def __init__(
        self,
        store: LedgerStore,
        points_engine: PointsEngine,
        catalog: TierCatalog,
        achievements: Optional[Sequence[AchievementDefinition]] = None,
        booking_history: Optional[BookingHistory] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.points_engine = points_engine
        self.catalog = catalog
        self.achievements = list(achievements) if achievements is not None else load_achievements(catalog)
        self.booking_history = booking_history
        self.clock = clock

        self._by_event: Dict[str, List[AchievementDefinition]] = {}
        for achievement in self.achievements:
            self._by_event.setdefault(achievement.event_type, []).append(achievement)

    def get_achievement(self, achievement_id: str) -> Optional[AchievementDefinition]:
        for achievement in self.achievements:
            if achievement.achievement_id == achievement_id:
                return achievement
        return None

    def _build_context(
        self, transaction: AccountTransaction, now: datetime, completed_bookings: Optional[int]
    ) -> AchievementContext:
        return AchievementContext(
            user_id=transaction.user_id,
            points_balance=transaction.balance,
            lifetime_spent=transaction.lifetime_spent,
            tenure_days=max((now - transaction.created_at).days, 0),
            current_tier=self.catalog.tier_for_points(transaction.balance).name,
            completed_bookings=completed_bookings,
        )

    def check_and_unlock_achievements(
        self, user_id: str, event_type: str, payload: Any
    ) -> List[UnlockedAchievement]:
        """
        Unlock every achievement for ``event_type`` whose condition now holds.

        Args:
            user_id: The user the event belongs to
            event_type: One of the known loyalty event types
            payload: A typed event or a mapping of its fields

        Returns:
            Only the achievements unlocked by this call

        Raises:
            InvalidEvent: unknown event type or malformed payload
        """
        event = coerce_event(event_type, payload)
        if isinstance(event, TierAchieved) and event.tier not in self.catalog:
            raise InvalidEvent(event_type, f"unknown tier '{event.tier}'")

        candidates = self._by_event.get(event_type, [])
        if not candidates:
            return []

        completed_bookings = None
        if self.booking_history is not None and event_type in (
            BookingCompleted.event_type, BookingMilestone.event_type
        ):
            completed_bookings = self.booking_history.count_completed_bookings(user_id)

        def operation(transaction: AccountTransaction):
            now = self.clock()
            already_unlocked = transaction.unlocked_achievement_ids()
            context = self._build_context(transaction, now, completed_bookings)
            unlocked: List[UnlockedAchievement] = []
            entries = []

            for achievement in candidates:
                if achievement.achievement_id in already_unlocked:
                    continue
                if not achievement.trigger_condition(event, context):
                    continue

                record = transaction.unlock_achievement(
                    achievement.achievement_id, achievement.reward_points, now
                )
                if record is None:
                    continue

                if achievement.reward_points > 0:
                    entries.append(
                        self.points_engine.credit(
                            transaction,
                            LedgerEntryType.BONUS,
                            achievement.reward_points,
                            f"Achievement unlocked: {achievement.title}",
                            achievement.achievement_id,
                            "achievement",
                        )
                    )
                unlocked.append(record)

            return unlocked, entries

        unlocked, _ = self.points_engine.run_mutation(
            user_id, f"unlock_achievements:{event_type}", operation
        )

        for record in unlocked:
            logger.info(
                f"User {user_id} unlocked achievement {record.achievement_id} "
                f"(+{record.reward_points} points)"
            )
        return unlocked

    def get_unlocked_achievements(self, user_id: str) -> List[UnlockedAchievement]:
        return self.store.list_unlocked_achievements(user_id)
