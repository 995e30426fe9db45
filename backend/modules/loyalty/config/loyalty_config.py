# backend/modules/loyalty/config/loyalty_config.py

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


class LoyaltySettings(BaseSettings):
    """
    Configuration for points accrual, expiration and review policy.

    Every field can be overridden with a ``LOYALTY_`` prefixed environment
    variable, e.g. ``LOYALTY_REVIEW_THRESHOLD_POINTS=50000``.
    """

    # Months an EARNED/BONUS entry stays spendable before the sweep retires it
    POINTS_VALIDITY_MONTHS: int = 12

    # Single grants above this are written with flagged_for_review=True.
    # None disables flagging entirely.
    REVIEW_THRESHOLD_POINTS: Optional[int] = 100000

    # Currency tag passed through with tier benefits
    CURRENCY: str = "NGN"

    # Users processed per page by the expiration sweep
    EXPIRATION_BATCH_SIZE: int = 500

    # How often the scheduled sweep runs
    EXPIRATION_INTERVAL_MINUTES: int = 60

    # Retries for lock conflicts / stale versions on a single user mutation
    MAX_RETRIES: int = 3
    RETRY_INITIAL_DELAY: float = 0.05
    RETRY_MAX_DELAY: float = 1.0

    # Lifetime spend thresholds that emit a spending_milestone event
    SPENDING_MILESTONES: List[int] = [100000, 250000, 500000, 1000000]

    class Config:
        env_prefix = "LOYALTY_"
        case_sensitive = False


@lru_cache()
def get_loyalty_settings() -> LoyaltySettings:
    """Get the loyalty configuration (cached)."""
    return LoyaltySettings()
