# backend/modules/loyalty/tests/test_tier_catalog.py

import math

import pytest

from modules.loyalty.services import TierBenefits, TierCatalog, TierDefinition


def _tier(name, min_points, max_points, multiplier=1.0):
    return TierDefinition(
        name=name,
        min_points=min_points,
        max_points=max_points,
        benefits=TierBenefits(
            discount_percentage=0,
            point_multiplier=multiplier,
            priority_booking=False,
            free_delivery_threshold=None,
            birthday_bonus_points=0,
        ),
    )


class TestTierCatalog:
    """Tier lookup over the default tier table"""

    @pytest.mark.parametrize(
        "points,expected",
        [
            (0, "BRONZE"),
            (999, "BRONZE"),
            (1000, "SILVER"),
            (2999, "SILVER"),
            (3000, "GOLD"),
            (5000, "PLATINUM"),
            (9999, "PLATINUM"),
            (10000, "DIAMOND"),
            (10_000_000, "DIAMOND"),
        ],
    )
    def test_tier_for_points_uses_half_open_ranges(self, tier_catalog, points, expected):
        assert tier_catalog.tier_for_points(points).name == expected

    def test_default_table_benefits(self, tier_catalog):
        platinum = tier_catalog.get("PLATINUM")
        assert platinum.benefits.point_multiplier == 1.5
        assert platinum.benefits.priority_booking is True
        assert tier_catalog.get("BRONZE").benefits.point_multiplier == 1.0
        assert tier_catalog.get("DIAMOND").benefits.discount_percentage == 15

    def test_rank_and_next_tier(self, tier_catalog):
        assert [tier.name for tier in tier_catalog] == [
            "BRONZE", "SILVER", "GOLD", "PLATINUM", "DIAMOND"
        ]
        assert tier_catalog.rank("BRONZE") == 0
        assert tier_catalog.rank("DIAMOND") == len(tier_catalog) - 1
        assert tier_catalog.next_tier(tier_catalog.get("GOLD")).name == "PLATINUM"
        assert tier_catalog.next_tier(tier_catalog.get("DIAMOND")) is None

    def test_unknown_tier(self, tier_catalog):
        assert "COPPER" not in tier_catalog
        with pytest.raises(KeyError):
            tier_catalog.get("COPPER")

    def test_rejects_gaps_between_tiers(self):
        with pytest.raises(ValueError, match="must end where"):
            TierCatalog([_tier("A", 0, 100), _tier("B", 200, math.inf)])

    def test_rejects_closed_top_tier(self):
        with pytest.raises(ValueError, match="open ended"):
            TierCatalog([_tier("A", 0, 100), _tier("B", 100, 500)])

    def test_rejects_catalog_not_starting_at_zero(self):
        with pytest.raises(ValueError, match="start at 0"):
            TierCatalog([_tier("A", 10, math.inf)])

    def test_rejects_multiplier_below_one(self):
        with pytest.raises(ValueError, match="multiplier"):
            TierCatalog([_tier("A", 0, math.inf, multiplier=0.5)])


class TestTierService:
    """Tier status is derived from the live balance on every read"""

    def test_unknown_user_is_bronze(self, tier_service):
        status = tier_service.get_user_tier("nobody")
        assert status.current_tier == "BRONZE"
        assert status.points == 0
        assert status.next_tier == "SILVER"
        assert status.points_to_next_tier == 1000

    def test_tier_follows_balance(self, points_engine, tier_service):
        points_engine.earn_points("user-1", 3500, "Seed")

        status = tier_service.get_user_tier("user-1")
        assert status.current_tier == "GOLD"
        assert status.points_to_next_tier == 1500

        points_engine.redeem_points("user-1", 1000, "Dinner voucher")
        assert tier_service.get_user_tier("user-1").current_tier == "SILVER"

    def test_top_tier_has_no_next(self, points_engine, tier_service):
        points_engine.earn_points("whale", 12000, "Seed")

        status = tier_service.get_user_tier("whale")
        assert status.current_tier == "DIAMOND"
        assert status.next_tier is None
        assert status.points_to_next_tier == 0

    def test_get_tier_benefits(self, points_engine, tier_service):
        points_engine.earn_points("user-1", 5000, "Seed")

        benefits = tier_service.get_tier_benefits("user-1")
        assert benefits.tier == "PLATINUM"
        assert benefits.discount_percentage == 10
        assert benefits.point_multiplier == 1.5
        assert benefits.priority_booking is True
        assert benefits.currency == "NGN"
