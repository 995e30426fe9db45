# backend/modules/loyalty/data/__init__.py

from .default_tiers import DEFAULT_TIERS
from .default_achievements import DEFAULT_ACHIEVEMENTS

__all__ = ["DEFAULT_TIERS", "DEFAULT_ACHIEVEMENTS"]
