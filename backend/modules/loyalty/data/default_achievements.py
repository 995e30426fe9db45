# backend/modules/loyalty/data/default_achievements.py

# Achievement definitions keyed by the event type that can unlock them.
# "condition" holds the parameters of the matching predicate in
# modules.loyalty.services.achievement_rules.
DEFAULT_ACHIEVEMENTS = [
    {
        "achievement_id": "first_booking",
        "title": "First Booking",
        "description": "Complete your first restaurant booking",
        "event_type": "booking_completed",
        "condition": {"min_completed_bookings": 1},
        "reward_points": 100,
        "rarity": "common",
    },
    {
        "achievement_id": "regular_diner",
        "title": "Regular Diner",
        "description": "Complete 10 restaurant bookings",
        "event_type": "booking_milestone",
        "condition": {"min_total_bookings": 10},
        "reward_points": 500,
        "rarity": "rare",
    },
    {
        "achievement_id": "vip_status",
        "title": "VIP Status",
        "description": "Reach Platinum tier",
        "event_type": "tier_achieved",
        "condition": {"min_tier": "PLATINUM"},
        "reward_points": 1000,
        "rarity": "epic",
    },
    {
        "achievement_id": "big_spender",
        "title": "Big Spender",
        "description": "Spend ₦500,000 across all bookings",
        "event_type": "spending_milestone",
        "condition": {"min_total_spent": 500000},
        "reward_points": 1000,
        "rarity": "legendary",
    },
    {
        "achievement_id": "loyal_customer",
        "title": "Loyal Customer",
        "description": "Stay a member for a full year",
        "event_type": "anniversary",
        "condition": {"min_days": 365},
        "reward_points": 500,
        "rarity": "rare",
    },
    {
        "achievement_id": "social_sharer",
        "title": "Social Sharer",
        "description": "Share a restaurant on social media",
        "event_type": "social_share",
        "condition": {},
        "reward_points": 50,
        "rarity": "common",
    },
]
