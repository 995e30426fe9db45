# backend/modules/loyalty/tests/test_sqlalchemy_ledger_store.py

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from modules.loyalty.exceptions import InsufficientPoints, TransactionFailure
from modules.loyalty.models import (
    LedgerEntryType,
    LedgerExpirationOffset,
    LoyaltyAccount,
    UnlockedAchievement,
)
from modules.loyalty.services import ExpirationSweeper, PointsEngine, TierService
from modules.loyalty.stores import is_retryable_error


@pytest.fixture
def sql_points_engine(sql_store, tier_catalog, loyalty_settings, clock):
    return PointsEngine(
        sql_store, TierService(sql_store, tier_catalog), settings=loyalty_settings, clock=clock
    )


def _earn(transaction, points, clock):
    return transaction.append_entry(
        entry_type=LedgerEntryType.EARNED,
        points=points,
        description="Test earn",
        created_at=clock(),
    )


class TestRunAtomic:
    def test_creates_account_on_first_write(self, sql_store, session_factory, clock):
        entry = sql_store.run_atomic("user-1", lambda tx: _earn(tx, 120, clock))

        assert entry.id is not None
        assert entry.balance_after == 120

        session = session_factory()
        try:
            account = session.query(LoyaltyAccount).filter_by(user_id="user-1").one()
            assert account.points_balance == 120
            assert account.created_at == clock()
        finally:
            session.close()

    def test_loyalty_error_rolls_back_everything(self, sql_store, clock):
        sql_store.run_atomic("user-1", lambda tx: _earn(tx, 100, clock))

        def operation(tx):
            _earn(tx, 50, clock)
            raise InsufficientPoints("user-1", 500, tx.balance)

        with pytest.raises(InsufficientPoints):
            sql_store.run_atomic("user-1", operation)

        assert sql_store.get_account("user-1").points_balance == 100
        assert len(sql_store.list_entries("user-1")) == 1

    def test_debit_below_zero_is_refused(self, sql_store, clock):
        def operation(tx):
            return tx.append_entry(
                entry_type=LedgerEntryType.REDEEMED,
                points=-10,
                description="Overdraw",
                created_at=clock(),
            )

        with pytest.raises(InsufficientPoints):
            sql_store.run_atomic("user-1", operation)

    def test_retries_stale_version(self, sql_store, clock):
        attempts = []

        def operation(tx):
            attempts.append(tx.balance)
            if len(attempts) == 1:
                _earn(tx, 999, clock)
                raise StaleDataError("account version changed")
            return _earn(tx, 10, clock)

        entry = sql_store.run_atomic("user-1", operation, "earn_points")

        assert len(attempts) == 2
        assert entry.balance_after == 10
        assert sql_store.get_account("user-1").points_balance == 10

    def test_exhausted_retries_raise_transaction_failure(self, sql_store):
        attempts = []

        def operation(tx):
            attempts.append(1)
            raise OperationalError("UPDATE loyalty_accounts", {}, Exception("database is locked"))

        with pytest.raises(TransactionFailure) as exc_info:
            sql_store.run_atomic("user-1", operation, "earn_points")

        assert len(attempts) == sql_store.max_retries + 1
        assert exc_info.value.retryable is True
        assert exc_info.value.operation == "earn_points"

    def test_integrity_errors_are_not_retried(self, sql_store):
        attempts = []

        def operation(tx):
            attempts.append(1)
            raise IntegrityError("INSERT", {}, Exception("constraint failed"))

        with pytest.raises(TransactionFailure) as exc_info:
            sql_store.run_atomic("user-1", operation)

        assert len(attempts) == 1
        assert exc_info.value.retryable is False

    def test_unexpected_errors_are_typed_and_rolled_back(self, sql_store, clock):
        sql_store.run_atomic("user-1", lambda tx: _earn(tx, 100, clock))
        attempts = []

        def operation(tx):
            attempts.append(1)
            _earn(tx, 50, clock)
            raise OverflowError("Python int too large to convert to SQLite INTEGER")

        with pytest.raises(TransactionFailure) as exc_info:
            sql_store.run_atomic("user-1", operation, "earn_points")

        assert len(attempts) == 1
        assert exc_info.value.retryable is False
        assert exc_info.value.operation == "earn_points"
        assert isinstance(exc_info.value.__cause__, OverflowError)
        assert sql_store.get_account("user-1").points_balance == 100
        assert len(sql_store.list_entries("user-1")) == 1


class TestUnlockAchievement:
    def test_duplicate_unlock_is_absorbed_by_savepoint(self, sql_store, session_factory, clock):
        def operation(tx):
            first = tx.unlock_achievement("first_booking", 100, clock())
            second = tx.unlock_achievement("first_booking", 100, clock())
            _earn(tx, 100, clock)
            return first, second

        first, second = sql_store.run_atomic("user-1", operation)

        assert first is not None
        assert second is None
        # The rest of the transaction still committed
        assert sql_store.get_account("user-1").points_balance == 100

        session = session_factory()
        try:
            assert session.query(UnlockedAchievement).filter_by(user_id="user-1").count() == 1
        finally:
            session.close()


class TestReads:
    def test_list_entries_filters_and_orders(self, sql_store, clock):
        sql_store.run_atomic("user-1", lambda tx: _earn(tx, 100, clock))
        clock.advance(minutes=5)
        sql_store.run_atomic("user-1", lambda tx: tx.append_entry(
            entry_type=LedgerEntryType.REDEEMED, points=-40,
            description="Coffee", created_at=clock(),
        ))
        clock.advance(minutes=5)
        sql_store.run_atomic("user-1", lambda tx: _earn(tx, 20, clock))

        assert [e.points for e in sql_store.list_entries("user-1")] == [100, -40, 20]
        assert [e.points for e in sql_store.list_entries("user-1", newest_first=True, limit=2)] == [20, -40]
        redeemed = sql_store.list_entries("user-1", entry_types=[LedgerEntryType.REDEEMED])
        assert [e.points for e in redeemed] == [-40]

    def test_top_balances(self, sql_store, clock):
        for user_id, points in (("a", 300), ("b", 900), ("c", 300)):
            sql_store.run_atomic(user_id, lambda tx, p=points: _earn(tx, p, clock))
        sql_store.run_atomic("d", lambda tx: tx.lifetime_spent)  # account with zero balance

        top = sql_store.top_balances(10)
        assert [(s.user_id, s.points_balance) for s in top] == [("b", 900), ("a", 300), ("c", 300)]

    def test_users_with_expirable_entries_pages_by_user_id(self, sql_points_engine, sql_store, clock):
        for user_id in ("u1", "u2", "u3"):
            sql_points_engine.earn_points(user_id, 10, "Visit")
        clock.advance(days=400)

        assert sql_store.users_with_expirable_entries(clock(), 2) == ["u1", "u2"]
        assert sql_store.users_with_expirable_entries(clock(), 2, after_user_id="u2") == ["u3"]

    def test_sweep_links_expired_lots(self, sql_points_engine, sql_store, session_factory, loyalty_settings, clock):
        earned = sql_points_engine.earn_points("u1", 75, "Visit")
        clock.advance(days=400)

        ExpirationSweeper(sql_store, settings=loyalty_settings, clock=clock).sweep()

        offsets = sql_store.get_expiration_offsets("u1")
        expired = sql_store.list_entries("u1", entry_types=[LedgerEntryType.EXPIRED])[0]
        assert offsets == {earned.id: expired.id}

        session = session_factory()
        try:
            offset = session.query(LedgerExpirationOffset).one()
            assert offset.expired_points == 75
        finally:
            session.close()


class TestIsRetryableError:
    def test_stale_data(self):
        assert is_retryable_error(StaleDataError("stale"))

    def test_lock_errors(self):
        assert is_retryable_error(OperationalError("SELECT", {}, Exception("database is locked")))
        assert is_retryable_error(OperationalError("SELECT", {}, Exception("deadlock detected")))

    def test_other_errors(self):
        assert not is_retryable_error(OperationalError("SELECT", {}, Exception("no such table")))
        assert not is_retryable_error(IntegrityError("INSERT", {}, Exception("UNIQUE failed")))
        assert not is_retryable_error(ValueError("nope"))
