"""
Loyalty engine services.
"""

from .tier_catalog import TierBenefits, TierCatalog, TierDefinition, default_tier_catalog
from .tier_service import TierBenefitsView, TierService, TierStatus
from .points_engine import EarnResult, PointsChange, PointsEngine
from .expiration_sweeper import ExpirationSweeper, ExpirationSweepResult
from .achievement_rules import AchievementContext
from .achievement_engine import (
    AchievementDefinition,
    AchievementEngine,
    AchievementRarity,
    load_achievements,
)
from .loyalty_engine import (
    LoyaltyEngine,
    LoyaltyProfile,
    create_loyalty_engine,
    get_loyalty_engine,
)

__all__ = [
    "TierBenefits",
    "TierCatalog",
    "TierDefinition",
    "default_tier_catalog",
    "TierBenefitsView",
    "TierService",
    "TierStatus",
    "EarnResult",
    "PointsChange",
    "PointsEngine",
    "ExpirationSweeper",
    "ExpirationSweepResult",
    "AchievementContext",
    "AchievementDefinition",
    "AchievementEngine",
    "AchievementRarity",
    "load_achievements",
    "LoyaltyEngine",
    "LoyaltyProfile",
    "create_loyalty_engine",
    "get_loyalty_engine",
]
