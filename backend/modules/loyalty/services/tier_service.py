# backend/modules/loyalty/services/tier_service.py

"""
Tier status derived from the live points balance.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..interfaces import LedgerStore
from .tier_catalog import TierCatalog, TierDefinition


@dataclass(frozen=True)
class TierStatus:
    user_id: str
    current_tier: str
    points: int
    next_tier: Optional[str]
    points_to_next_tier: int
    lifetime_spent: Decimal


@dataclass(frozen=True)
class TierBenefitsView:
    """A tier's benefit row together with the display currency"""

    tier: str
    discount_percentage: float
    point_multiplier: float
    priority_booking: bool
    free_delivery_threshold: Optional[float]
    birthday_bonus_points: int
    currency: str


class TierService:
    """Looks up a user's tier and benefits.

    The tier is recomputed from the stored balance on every call and never
    persisted, so a balance drop from expiration demotes the user on the
    next read without any separate downgrade step.
    """

    def __init__(self, store: LedgerStore, catalog: TierCatalog, currency: str = "NGN"):
        self.store = store
        self.catalog = catalog
        self.currency = currency

    def tier_for_balance(self, points: int) -> TierDefinition:
        return self.catalog.tier_for_points(points)

    def status_for_balance(
        self, user_id: str, points: int, lifetime_spent: Decimal = Decimal("0")
    ) -> TierStatus:
        tier = self.catalog.tier_for_points(points)
        next_tier = self.catalog.next_tier(tier)
        return TierStatus(
            user_id=user_id,
            current_tier=tier.name,
            points=points,
            next_tier=next_tier.name if next_tier else None,
            points_to_next_tier=(next_tier.min_points - points) if next_tier else 0,
            lifetime_spent=lifetime_spent,
        )

    def get_user_tier(self, user_id: str) -> TierStatus:
        account = self.store.get_account(user_id)
        if account is None:
            return self.status_for_balance(user_id, 0)
        return self.status_for_balance(
            user_id, account.points_balance, account.lifetime_spent
        )

    def get_tier_benefits(self, user_id: str) -> TierBenefitsView:
        status = self.get_user_tier(user_id)
        benefits = self.catalog.get(status.current_tier).benefits
        return TierBenefitsView(
            tier=status.current_tier,
            discount_percentage=benefits.discount_percentage,
            point_multiplier=benefits.point_multiplier,
            priority_booking=benefits.priority_booking,
            free_delivery_threshold=benefits.free_delivery_threshold,
            birthday_bonus_points=benefits.birthday_bonus_points,
            currency=self.currency,
        )
