# backend/modules/loyalty/services/loyalty_engine.py

"""
Entry point wiring the loyalty components over one ledger store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, List, Optional

from ..config import LoyaltySettings, get_loyalty_settings
from ..events import SpendingMilestone, TierAchieved
from ..interfaces import AccountSnapshot, BookingHistory, LedgerStore
from ..models import LedgerEntryType, LoyaltyLedgerEntry, UnlockedAchievement
from .achievement_engine import AchievementDefinition, AchievementEngine
from .expiration_sweeper import ExpirationSweeper, ExpirationSweepResult
from .points_engine import EarnResult, PointsChange, PointsEngine
from .tier_catalog import TierCatalog, default_tier_catalog
from .tier_service import TierBenefitsView, TierService, TierStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class LoyaltyProfile:
    user_id: str
    tier: TierStatus
    benefits: TierBenefitsView
    expiring_points: int
    expiring_within_days: int
    achievements: List[UnlockedAchievement]


class LoyaltyEngine:
    """
    Facade over points, tiers, expiration and achievements.

    Balance changes that move a user into a higher tier emit a
    ``tier_achieved`` event, and lifetime spend crossing a configured
    milestone emits ``spending_milestone``. Both are evaluated after the
    change has committed; a failure there is logged and does not affect
    the change itself.
    """

    def __init__(
        self,
        store: LedgerStore,
        settings: Optional[LoyaltySettings] = None,
        catalog: Optional[TierCatalog] = None,
        achievements: Optional[List[AchievementDefinition]] = None,
        booking_history: Optional[BookingHistory] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.settings = settings or get_loyalty_settings()
        self.catalog = catalog or default_tier_catalog()
        self.clock = clock

        self.tiers = TierService(store, self.catalog, currency=self.settings.CURRENCY)
        self.points = PointsEngine(store, self.tiers, settings=self.settings, clock=clock)
        self.sweeper = ExpirationSweeper(store, settings=self.settings, clock=clock)
        self.achievements = AchievementEngine(
            store,
            self.points,
            self.catalog,
            achievements=achievements,
            booking_history=booking_history,
            clock=clock,
        )

        self.points.add_listener(self._on_tier_change)
        self.points.add_listener(self._on_spend_change)

    # ========== Event hooks ==========

    def _on_tier_change(self, change: PointsChange) -> None:
        if change.balance_after <= change.balance_before:
            return
        before = self.catalog.tier_for_points(change.balance_before)
        after = self.catalog.tier_for_points(change.balance_after)
        if self.catalog.rank(after.name) <= self.catalog.rank(before.name):
            return

        logger.info(f"User {change.user_id} reached tier {after.name} (from {before.name})")
        self.achievements.check_and_unlock_achievements(
            change.user_id, TierAchieved.event_type, TierAchieved(tier=after.name)
        )

    def _on_spend_change(self, change: PointsChange) -> None:
        crossed = [
            milestone
            for milestone in self.settings.SPENDING_MILESTONES
            if change.lifetime_spent_before < milestone <= change.lifetime_spent_after
        ]
        if not crossed:
            return

        logger.info(
            f"User {change.user_id} crossed spending milestone(s) {crossed} "
            f"with lifetime spend {change.lifetime_spent_after}"
        )
        self.achievements.check_and_unlock_achievements(
            change.user_id,
            SpendingMilestone.event_type,
            SpendingMilestone(total_spent=change.lifetime_spent_after),
        )

    # ========== Points ==========

    def earn_points(
        self,
        user_id: str,
        points: int,
        description: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        spend_amount: Optional[Any] = None,
    ) -> LoyaltyLedgerEntry:
        return self.points.earn_points(
            user_id, points, description, reference_id, reference_type, spend_amount
        )

    def earn_for_spend(
        self,
        user_id: str,
        amount: Any,
        loyalty_rate: Any,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
    ) -> EarnResult:
        return self.points.earn_for_spend(
            user_id, amount, loyalty_rate, description, reference_id, reference_type
        )

    def redeem_points(
        self,
        user_id: str,
        points: int,
        description: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
    ) -> LoyaltyLedgerEntry:
        return self.points.redeem_points(
            user_id, points, description, reference_id, reference_type
        )

    def award_bonus(
        self,
        user_id: str,
        points: int,
        description: str,
        reason: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
    ) -> LoyaltyLedgerEntry:
        return self.points.award_bonus(
            user_id, points, description, reason, reference_id, reference_type
        )

    def adjust_points(self, user_id: str, points: int, reason: str) -> LoyaltyLedgerEntry:
        return self.points.adjust_points(user_id, points, reason)

    def award_birthday_bonus(self, user_id: str, year: int) -> Optional[LoyaltyLedgerEntry]:
        return self.points.award_birthday_bonus(user_id, year)

    # ========== Expiration ==========

    def expire_old_points(self, now: Optional[datetime] = None) -> int:
        return self.sweeper.expire_old_points(now)

    def run_expiration_sweep(
        self, now: Optional[datetime] = None, batch_size: Optional[int] = None
    ) -> ExpirationSweepResult:
        return self.sweeper.sweep(now=now, batch_size=batch_size)

    def get_expiring_points(self, user_id: str, within_days: int = 30) -> int:
        return self.sweeper.get_expiring_points(user_id, within_days)

    # ========== Tiers ==========

    def get_user_tier(self, user_id: str) -> TierStatus:
        return self.tiers.get_user_tier(user_id)

    def get_tier_benefits(self, user_id: str) -> TierBenefitsView:
        return self.tiers.get_tier_benefits(user_id)

    # ========== Achievements ==========

    def check_and_unlock_achievements(
        self, user_id: str, event_type: str, payload: Any
    ) -> List[UnlockedAchievement]:
        return self.achievements.check_and_unlock_achievements(user_id, event_type, payload)

    def get_unlocked_achievements(self, user_id: str) -> List[UnlockedAchievement]:
        return self.achievements.get_unlocked_achievements(user_id)

    # ========== Read models ==========

    def get_balance(self, user_id: str) -> int:
        account = self.store.get_account(user_id)
        return account.points_balance if account else 0

    def get_points_history(
        self,
        user_id: str,
        limit: int = 50,
        entry_type: Optional[LedgerEntryType] = None,
    ) -> List[LoyaltyLedgerEntry]:
        """Most recent ledger entries first"""
        return self.store.list_entries(
            user_id,
            entry_types=[entry_type] if entry_type else None,
            limit=limit,
            newest_first=True,
        )

    def get_loyalty_profile(self, user_id: str, expiring_within_days: int = 30) -> LoyaltyProfile:
        tier = self.tiers.get_user_tier(user_id)
        return LoyaltyProfile(
            user_id=user_id,
            tier=tier,
            benefits=self.tiers.get_tier_benefits(user_id),
            expiring_points=self.sweeper.get_expiring_points(user_id, expiring_within_days),
            expiring_within_days=expiring_within_days,
            achievements=self.achievements.get_unlocked_achievements(user_id),
        )

    def get_leaderboard(self, limit: int = 10) -> List[AccountSnapshot]:
        return self.store.top_balances(limit)


def create_loyalty_engine(
    store: Optional[LedgerStore] = None,
    settings: Optional[LoyaltySettings] = None,
    booking_history: Optional[BookingHistory] = None,
) -> LoyaltyEngine:
    """Build an engine over the application database unless a store is given"""
    settings = settings or get_loyalty_settings()
    if store is None:
        from core.database import SessionLocal
        from ..stores import SQLAlchemyLedgerStore

        store = SQLAlchemyLedgerStore(
            SessionLocal,
            max_retries=settings.MAX_RETRIES,
            initial_delay=settings.RETRY_INITIAL_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
        )
    return LoyaltyEngine(store, settings=settings, booking_history=booking_history)


@lru_cache()
def get_loyalty_engine() -> LoyaltyEngine:
    """FastAPI dependency returning the process-wide engine"""
    return create_loyalty_engine()
