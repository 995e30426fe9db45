# backend/modules/loyalty/schemas/loyalty_schemas.py

"""
Pydantic schemas for the loyalty API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models import LedgerEntryType


# ========== Ledger ==========


class LedgerEntryResponse(BaseModel):
    id: int
    user_id: str
    entry_type: LedgerEntryType
    points: int
    balance_after: int
    description: str
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    flagged_for_review: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class EarnPointsRequest(BaseModel):
    """Either a fixed number of points, or a spend amount and loyalty rate"""

    points: Optional[int] = Field(None, description="Points to credit")
    amount: Optional[Decimal] = Field(None, description="Monetary spend to convert")
    loyalty_rate: Optional[Decimal] = Field(None, description="Points per currency unit")
    spend_amount: Optional[Decimal] = Field(
        None, description="Spend to add to lifetime spend with a fixed-points earn"
    )
    description: Optional[str] = Field(None, max_length=500)
    reference_id: Optional[str] = Field(None, max_length=100)
    reference_type: Optional[str] = Field(None, max_length=50)

    @model_validator(mode="after")
    def check_earn_mode(self):
        by_points = self.points is not None
        by_spend = self.amount is not None or self.loyalty_rate is not None
        if by_points == by_spend:
            raise ValueError("Provide either points, or amount and loyalty_rate")
        if by_spend and (self.amount is None or self.loyalty_rate is None):
            raise ValueError("amount and loyalty_rate must be provided together")
        if by_spend and self.spend_amount is not None:
            raise ValueError("spend_amount only applies to a fixed-points earn")
        return self


class EarnPointsResponse(BaseModel):
    user_id: str
    entries: List[LedgerEntryResponse]
    total_points: int
    balance: int


class RedeemPointsRequest(BaseModel):
    points: int = Field(..., description="Points to redeem")
    description: str = Field("Points redemption", max_length=500)
    reference_id: Optional[str] = Field(None, max_length=100)
    reference_type: Optional[str] = Field(None, max_length=50)


class AdjustPointsRequest(BaseModel):
    points: int = Field(..., description="Signed adjustment")
    reason: str = Field(..., min_length=1, max_length=500)


class BonusPointsRequest(BaseModel):
    points: int
    description: str = Field(..., min_length=1, max_length=500)
    reason: str = Field(..., min_length=1, max_length=50)
    reference_id: Optional[str] = Field(None, max_length=100)


# ========== Tiers ==========


class TierStatusResponse(BaseModel):
    user_id: str
    current_tier: str
    points: int
    next_tier: Optional[str] = None
    points_to_next_tier: int
    lifetime_spent: Decimal

    class Config:
        from_attributes = True


class TierBenefitsResponse(BaseModel):
    tier: str
    discount_percentage: float
    point_multiplier: float
    priority_booking: bool
    free_delivery_threshold: Optional[float] = None
    birthday_bonus_points: int
    currency: str

    class Config:
        from_attributes = True


# ========== Achievements ==========


class AchievementEventRequest(BaseModel):
    event_type: str = Field(..., description="Loyalty event type, e.g. booking_completed")
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_type")
    @classmethod
    def normalize_event_type(cls, v: str) -> str:
        return v.strip().lower()


class UnlockedAchievementResponse(BaseModel):
    achievement_id: str
    unlocked_at: datetime
    reward_points: int
    title: Optional[str] = None
    rarity: Optional[str] = None

    class Config:
        from_attributes = True


# ========== Profile / batch ==========


class LoyaltyProfileResponse(BaseModel):
    user_id: str
    tier: TierStatusResponse
    benefits: TierBenefitsResponse
    expiring_points: int
    expiring_within_days: int
    achievements: List[UnlockedAchievementResponse]

    class Config:
        from_attributes = True


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    points: int
    tier: str


class ExpirationSweepResponse(BaseModel):
    users_scanned: int
    users_expired: int
    points_expired: int
    failed_user_ids: List[str]

    class Config:
        from_attributes = True
