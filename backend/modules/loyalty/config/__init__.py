# backend/modules/loyalty/config/__init__.py

from .loyalty_config import LoyaltySettings, get_loyalty_settings

__all__ = ["LoyaltySettings", "get_loyalty_settings"]
