# backend/modules/loyalty/tests/test_loyalty_concurrency.py

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from modules.loyalty.exceptions import InsufficientPoints, TransactionFailure
from modules.loyalty.models import LedgerEntryType
from modules.loyalty.services import LoyaltyEngine, PointsEngine, TierService
from modules.loyalty.stores import InMemoryLedgerStore


class FailingPublishStore(InMemoryLedgerStore):
    """Fails the commit step of the next ``failures`` transactions"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = 0

    def _publish(self, state, transaction):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("simulated storage failure")
        super()._publish(state, transaction)


@pytest.fixture
def engine(threaded_store, tier_catalog, loyalty_settings, clock):
    return PointsEngine(
        threaded_store, TierService(threaded_store, tier_catalog), settings=loyalty_settings, clock=clock
    )


class TestConcurrentMutations:
    """Runs against the in-memory store and a file-backed SQLite database"""

    def test_concurrent_earns_lose_no_updates(self, engine, threaded_store, assert_ledger_balanced):
        with ThreadPoolExecutor(max_workers=10) as executor:
            list(executor.map(
                lambda i: engine.earn_points("user-1", 100, f"Visit {i}"), range(10)
            ))

        assert threaded_store.get_account("user-1").points_balance == 1000
        entries = threaded_store.list_entries("user-1")
        assert len(entries) == 10
        assert sorted(e.balance_after for e in entries) == list(range(100, 1001, 100))
        assert_ledger_balanced(threaded_store, "user-1")

    def test_concurrent_redemptions_never_overdraw(
        self, engine, threaded_store, assert_ledger_balanced
    ):
        engine.earn_points("user-1", 500, "Seed")
        outcomes = []
        lock = threading.Lock()

        def redeem(_):
            try:
                engine.redeem_points("user-1", 100, "Coffee")
                result = "ok"
            except InsufficientPoints:
                result = "insufficient"
            with lock:
                outcomes.append(result)

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(redeem, range(8)))

        assert outcomes.count("ok") == 5
        assert outcomes.count("insufficient") == 3
        assert threaded_store.get_account("user-1").points_balance == 0
        assert_ledger_balanced(threaded_store, "user-1")

    def test_different_users_progress_independently(self, engine, threaded_store):
        def earn(i):
            engine.earn_points(f"user-{i % 4}", 10, "Visit")

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(earn, range(40)))

        assert [threaded_store.get_account(f"user-{i}").points_balance for i in range(4)] == [100] * 4


class TestAllOrNothing:
    @pytest.fixture
    def failing_store(self, clock):
        return FailingPublishStore(clock=clock)

    def test_failed_earn_leaves_no_trace(self, failing_store, tier_catalog, loyalty_settings, clock):
        engine = PointsEngine(
            failing_store, TierService(failing_store, tier_catalog), settings=loyalty_settings, clock=clock
        )
        engine.earn_points("user-1", 5000, "Seed")

        failing_store.failures = 1
        with pytest.raises(TransactionFailure) as exc_info:
            engine.earn_for_spend("user-1", 10000, "0.02")

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503
        # Neither the EARNED nor the BONUS entry was written
        assert failing_store.get_account("user-1").points_balance == 5000
        assert [e.entry_type for e in failing_store.list_entries("user-1")] == [LedgerEntryType.EARNED]

        # A retry after the failure succeeds normally
        result = engine.earn_for_spend("user-1", 10000, "0.02")
        assert result.balance == 5300

    def test_failed_unlock_can_be_retried(self, failing_store, loyalty_settings, clock):
        engine = LoyaltyEngine(failing_store, settings=loyalty_settings, clock=clock)

        failing_store.failures = 1
        with pytest.raises(TransactionFailure):
            engine.check_and_unlock_achievements("user-1", "social_share", {"platform": "x"})

        assert engine.get_unlocked_achievements("user-1") == []
        assert engine.get_balance("user-1") == 0

        unlocked = engine.check_and_unlock_achievements("user-1", "social_share", {"platform": "x"})
        assert [a.achievement_id for a in unlocked] == ["social_sharer"]
        assert engine.get_balance("user-1") == 50

    def test_failure_is_not_published_to_listeners(self, failing_store, tier_catalog, loyalty_settings, clock):
        engine = PointsEngine(
            failing_store, TierService(failing_store, tier_catalog), settings=loyalty_settings, clock=clock
        )
        changes = []
        engine.add_listener(changes.append)

        failing_store.failures = 1
        with pytest.raises(TransactionFailure):
            engine.earn_points("user-1", 100, "Dinner")

        assert changes == []
