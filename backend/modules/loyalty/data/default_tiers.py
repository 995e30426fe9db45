# backend/modules/loyalty/data/default_tiers.py

import math


# Ordered tier table. Each tier covers [min_points, max_points) of the
# live points balance; the top tier is open ended.
DEFAULT_TIERS = [
    {
        "name": "BRONZE",
        "min_points": 0,
        "max_points": 1000,
        "display_name": "Bronze",
        "benefits": {
            "discount_percentage": 0,
            "point_multiplier": 1.0,
            "priority_booking": False,
            "free_delivery_threshold": None,
            "birthday_bonus_points": 100,
        },
    },
    {
        "name": "SILVER",
        "min_points": 1000,
        "max_points": 3000,
        "display_name": "Silver",
        "benefits": {
            "discount_percentage": 5,
            "point_multiplier": 1.1,
            "priority_booking": False,
            "free_delivery_threshold": 20000,
            "birthday_bonus_points": 250,
        },
    },
    {
        "name": "GOLD",
        "min_points": 3000,
        "max_points": 5000,
        "display_name": "Gold",
        "benefits": {
            "discount_percentage": 8,
            "point_multiplier": 1.25,
            "priority_booking": True,
            "free_delivery_threshold": 15000,
            "birthday_bonus_points": 500,
        },
    },
    {
        "name": "PLATINUM",
        "min_points": 5000,
        "max_points": 10000,
        "display_name": "Platinum",
        "benefits": {
            "discount_percentage": 10,
            "point_multiplier": 1.5,
            "priority_booking": True,
            "free_delivery_threshold": 10000,
            "birthday_bonus_points": 1000,
        },
    },
    {
        "name": "DIAMOND",
        "min_points": 10000,
        "max_points": math.inf,
        "display_name": "Diamond",
        "benefits": {
            "discount_percentage": 15,
            "point_multiplier": 2.0,
            "priority_booking": True,
            "free_delivery_threshold": 0,
            "birthday_bonus_points": 2000,
        },
    },
]
