# backend/modules/loyalty/tests/test_expiration_sweeper.py

import pytest

from modules.loyalty.models import LedgerEntryType
from modules.loyalty.services import ExpirationSweeper, PointsEngine, TierService
from modules.loyalty.stores import InMemoryLedgerStore


@pytest.fixture
def sweeper(store, loyalty_settings, clock):
    return ExpirationSweeper(store, settings=loyalty_settings, clock=clock)


def _types_and_points(store, user_id):
    return [(e.entry_type, e.points) for e in store.list_entries(user_id)]


class TestExpireOldPoints:
    """Retiring EARNED/BONUS lots past their validity window"""

    def test_expires_stale_earning(
        self, points_engine, sweeper, store, clock, assert_ledger_balanced
    ):
        points_engine.earn_points("user-1", 1000, "Dinner")
        clock.advance(days=365 + 30 * 13)  # expiry now ~13 months in the past

        assert sweeper.expire_old_points() == 1

        assert store.get_account("user-1").points_balance == 0
        assert _types_and_points(store, "user-1") == [
            (LedgerEntryType.EARNED, 1000),
            (LedgerEntryType.EXPIRED, -1000),
        ]
        assert sweeper.expire_old_points() == 0
        assert len(store.list_entries("user-1")) == 2
        assert_ledger_balanced(store, "user-1")

    def test_points_within_window_are_kept(self, points_engine, sweeper, store, clock):
        points_engine.earn_points("user-1", 400, "Lunch")
        clock.advance(days=300)

        assert sweeper.expire_old_points() == 0
        assert store.get_account("user-1").points_balance == 400

    def test_redemptions_consume_soonest_expiring_points_first(
        self, points_engine, sweeper, store, clock, assert_ledger_balanced
    ):
        points_engine.earn_points("user-1", 500, "January dinner")
        clock.advance(days=182)
        points_engine.earn_points("user-1", 300, "July dinner")
        points_engine.redeem_points("user-1", 400, "Voucher")

        # Only the first lot has lapsed; 100 of it is left after the redemption
        clock.advance(days=200)
        result = sweeper.sweep()
        assert result.points_expired == 100
        assert store.get_account("user-1").points_balance == 300

        # Then the second lot lapses in full
        clock.advance(days=200)
        result = sweeper.sweep()
        assert result.points_expired == 300
        assert store.get_account("user-1").points_balance == 0
        assert_ledger_balanced(store, "user-1")

    def test_fully_redeemed_lot_expires_nothing(
        self, points_engine, sweeper, store, clock, assert_ledger_balanced
    ):
        points_engine.adjust_points("user-1", 200, "Goodwill")
        points_engine.earn_points("user-1", 100, "Dinner")
        points_engine.redeem_points("user-1", 150, "Voucher")

        clock.advance(days=400)
        result = sweeper.sweep()

        # The expiring lot was used up first; the adjustment does not expire
        assert result.users_expired == 0
        assert result.users_scanned == 1
        assert store.get_account("user-1").points_balance == 150
        assert LedgerEntryType.EXPIRED not in [e.entry_type for e in store.list_entries("user-1")]

        # The lot is settled and no longer scanned
        assert sweeper.sweep().users_scanned == 0
        assert_ledger_balanced(store, "user-1")

    def test_bonus_entries_expire_too(
        self, points_engine, sweeper, store, clock, assert_ledger_balanced
    ):
        points_engine.award_bonus("user-1", 250, "Promo", "promotion")
        clock.advance(days=400)

        result = sweeper.sweep()

        assert result.points_expired == 250
        assert store.get_account("user-1").points_balance == 0
        assert_ledger_balanced(store, "user-1")

    def test_one_expired_entry_per_user(
        self, points_engine, sweeper, store, clock, assert_ledger_balanced
    ):
        points_engine.earn_points("user-1", 100, "First")
        points_engine.earn_points("user-1", 200, "Second")
        clock.advance(days=400)

        sweeper.sweep()

        expired = store.list_entries("user-1", entry_types=[LedgerEntryType.EXPIRED])
        assert len(expired) == 1
        assert expired[0].points == -300
        assert expired[0].balance_after == 0
        assert_ledger_balanced(store, "user-1")

    def test_sweep_pages_through_users(self, points_engine, sweeper, store, clock):
        for index in range(5):
            points_engine.earn_points(f"user-{index}", 100 * (index + 1), "Dinner")
        clock.advance(days=400)

        result = sweeper.sweep(batch_size=2)

        assert result.users_scanned == 5
        assert result.users_expired == 5
        assert result.points_expired == 1500
        assert result.failed_user_ids == []

    def test_tier_drops_after_expiration(self, loyalty_engine, store, clock):
        loyalty_engine.points.earn_points("user-1", 3200, "Seed")
        assert loyalty_engine.get_user_tier("user-1").current_tier == "GOLD"

        clock.advance(days=400)
        loyalty_engine.expire_old_points()

        assert loyalty_engine.get_user_tier("user-1").current_tier == "BRONZE"


class TestSweepFailureIsolation:
    def test_failed_user_does_not_block_others(self, loyalty_settings, clock, tier_catalog):
        class FlakyStore(InMemoryLedgerStore):
            armed = False

            def _publish(self, state, transaction):
                if self.armed and state.user_id == "user-b":
                    raise RuntimeError("disk full")
                super()._publish(state, transaction)

        store = FlakyStore(clock=clock)
        engine = PointsEngine(store, TierService(store, tier_catalog), settings=loyalty_settings, clock=clock)
        for user_id in ("user-a", "user-b", "user-c"):
            engine.earn_points(user_id, 100, "Dinner")

        clock.advance(days=400)
        store.armed = True
        result = ExpirationSweeper(store, settings=loyalty_settings, clock=clock).sweep()

        assert result.failed_user_ids == ["user-b"]
        assert result.users_expired == 2
        assert store.get_account("user-a").points_balance == 0
        assert store.get_account("user-b").points_balance == 100
        assert store.get_account("user-c").points_balance == 0


class TestExpiringPoints:
    def test_points_expiring_within_window(self, points_engine, sweeper, clock):
        points_engine.earn_points("user-1", 100, "Dinner")
        clock.advance(days=350)
        points_engine.earn_points("user-1", 40, "Lunch")

        assert sweeper.get_expiring_points("user-1", within_days=30) == 100
        assert sweeper.get_expiring_points("user-1", within_days=5) == 0

    def test_expiring_points_net_of_redemptions(self, points_engine, sweeper, clock):
        points_engine.earn_points("user-1", 100, "Dinner")
        points_engine.redeem_points("user-1", 60, "Coffee")
        clock.advance(days=350)

        assert sweeper.get_expiring_points("user-1", within_days=30) == 40

    def test_unknown_user_has_nothing_expiring(self, sweeper):
        assert sweeper.get_expiring_points("nobody") == 0
