# backend/modules/loyalty/routes/loyalty_routes.py

"""
HTTP routes for points, tiers and achievements.

Authentication and authorization belong to the application mounting this
router.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from core.error_handling import handle_api_errors

from ..models import LedgerEntryType
from ..schemas.loyalty_schemas import (
    AchievementEventRequest,
    AdjustPointsRequest,
    BonusPointsRequest,
    EarnPointsRequest,
    EarnPointsResponse,
    ExpirationSweepResponse,
    LeaderboardEntry,
    LedgerEntryResponse,
    LoyaltyProfileResponse,
    RedeemPointsRequest,
    TierBenefitsResponse,
    TierStatusResponse,
    UnlockedAchievementResponse,
)
from ..services.loyalty_engine import LoyaltyEngine, get_loyalty_engine

router = APIRouter(prefix="/api/v1/loyalty", tags=["Loyalty"])


def _achievement_response(engine: LoyaltyEngine, unlocked) -> UnlockedAchievementResponse:
    definition = engine.achievements.get_achievement(unlocked.achievement_id)
    return UnlockedAchievementResponse(
        achievement_id=unlocked.achievement_id,
        unlocked_at=unlocked.unlocked_at,
        reward_points=unlocked.reward_points,
        title=definition.title if definition else None,
        rarity=definition.rarity.value if definition else None,
    )


# ========== Tiers ==========


@router.get("/users/{user_id}/tier", response_model=TierStatusResponse)
@handle_api_errors
def get_user_tier(user_id: str, engine: LoyaltyEngine = Depends(get_loyalty_engine)):
    """Current tier and distance to the next one, from the live balance."""
    return TierStatusResponse.model_validate(engine.get_user_tier(user_id))


@router.get("/users/{user_id}/benefits", response_model=TierBenefitsResponse)
@handle_api_errors
def get_tier_benefits(user_id: str, engine: LoyaltyEngine = Depends(get_loyalty_engine)):
    return TierBenefitsResponse.model_validate(engine.get_tier_benefits(user_id))


@router.get("/users/{user_id}/profile", response_model=LoyaltyProfileResponse)
@handle_api_errors
def get_loyalty_profile(
    user_id: str,
    expiring_within_days: int = Query(30, ge=1, le=365),
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    """
    Loyalty profile: tier status, benefits, points expiring soon and
    unlocked achievements.
    """
    profile = engine.get_loyalty_profile(user_id, expiring_within_days)
    return LoyaltyProfileResponse(
        user_id=profile.user_id,
        tier=TierStatusResponse.model_validate(profile.tier),
        benefits=TierBenefitsResponse.model_validate(profile.benefits),
        expiring_points=profile.expiring_points,
        expiring_within_days=profile.expiring_within_days,
        achievements=[_achievement_response(engine, a) for a in profile.achievements],
    )


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
@handle_api_errors
def get_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    return [
        LeaderboardEntry(
            rank=index + 1,
            user_id=account.user_id,
            points=account.points_balance,
            tier=engine.catalog.tier_for_points(account.points_balance).name,
        )
        for index, account in enumerate(engine.get_leaderboard(limit))
    ]


# ========== Points ==========


@router.get("/users/{user_id}/history", response_model=List[LedgerEntryResponse])
@handle_api_errors
def get_points_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    entry_type: Optional[LedgerEntryType] = Query(None),
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    return engine.get_points_history(user_id, limit=limit, entry_type=entry_type)


@router.post(
    "/users/{user_id}/points/earn",
    response_model=EarnPointsResponse,
    status_code=status.HTTP_201_CREATED,
)
@handle_api_errors
def earn_points(
    user_id: str,
    request: EarnPointsRequest,
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    """
    Credit points, either a fixed amount or converted from a spend at the
    restaurant's loyalty rate (tier bonus applied as a separate entry).

    Raises:
        422: Invalid points, amount or rate
        503: Ledger temporarily unavailable, safe to retry
    """
    if request.points is not None:
        entry = engine.earn_points(
            user_id,
            request.points,
            request.description or "Points earned",
            reference_id=request.reference_id,
            reference_type=request.reference_type,
            spend_amount=request.spend_amount,
        )
        entries = [entry]
        balance = entry.balance_after
    else:
        result = engine.earn_for_spend(
            user_id,
            request.amount,
            request.loyalty_rate,
            description=request.description,
            reference_id=request.reference_id,
            reference_type=request.reference_type,
        )
        entries = [e for e in (result.earned, result.bonus) if e is not None]
        balance = result.balance

    return EarnPointsResponse(
        user_id=user_id,
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total_points=sum(e.points for e in entries),
        balance=balance,
    )


@router.post(
    "/users/{user_id}/points/redeem",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
@handle_api_errors
def redeem_points(
    user_id: str,
    request: RedeemPointsRequest,
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    """
    Redeem points against the current balance.

    Raises:
        409: Insufficient points
        422: Invalid points value
    """
    return engine.redeem_points(
        user_id,
        request.points,
        request.description,
        reference_id=request.reference_id,
        reference_type=request.reference_type,
    )


@router.post(
    "/users/{user_id}/points/bonus",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
@handle_api_errors
def award_bonus(
    user_id: str,
    request: BonusPointsRequest,
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    return engine.award_bonus(
        user_id,
        request.points,
        request.description,
        request.reason,
        reference_id=request.reference_id,
    )


@router.post("/users/{user_id}/points/adjust", response_model=LedgerEntryResponse)
@handle_api_errors
def adjust_points(
    user_id: str,
    request: AdjustPointsRequest,
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    return engine.adjust_points(user_id, request.points, request.reason)


# ========== Achievements ==========


@router.get(
    "/users/{user_id}/achievements", response_model=List[UnlockedAchievementResponse]
)
@handle_api_errors
def get_achievements(user_id: str, engine: LoyaltyEngine = Depends(get_loyalty_engine)):
    return [
        _achievement_response(engine, a) for a in engine.get_unlocked_achievements(user_id)
    ]


@router.post(
    "/users/{user_id}/achievements/events",
    response_model=List[UnlockedAchievementResponse],
)
@handle_api_errors
def submit_achievement_event(
    user_id: str,
    request: AchievementEventRequest,
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    """
    Evaluate a loyalty event. Returns only the achievements this event
    newly unlocked; repeats of an already satisfied event return [].
    """
    unlocked = engine.check_and_unlock_achievements(
        user_id, request.event_type, request.payload
    )
    return [_achievement_response(engine, a) for a in unlocked]


# ========== Batch ==========


@router.post("/expirations/run", response_model=ExpirationSweepResponse)
@handle_api_errors
def run_expiration_sweep(
    batch_size: Optional[int] = Query(None, ge=1, le=10000),
    engine: LoyaltyEngine = Depends(get_loyalty_engine),
):
    """Run the points expiration sweep now."""
    return ExpirationSweepResponse.model_validate(
        engine.run_expiration_sweep(batch_size=batch_size)
    )
