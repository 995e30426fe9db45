# backend/modules/loyalty/tests/conftest.py

import pytest
from datetime import datetime, timedelta
from sqlalchemy.orm import sessionmaker

from core.database import Base, build_engine
from modules.loyalty.config import LoyaltySettings
from modules.loyalty.models import loyalty_models  # noqa: F401
from modules.loyalty.services import (
    LoyaltyEngine,
    PointsEngine,
    TierService,
    default_tier_catalog,
)
from modules.loyalty.stores import InMemoryLedgerStore, SQLAlchemyLedgerStore


class FrozenClock:
    """Test clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 12, 0, 0))


@pytest.fixture
def loyalty_settings():
    return LoyaltySettings(
        POINTS_VALIDITY_MONTHS=12,
        REVIEW_THRESHOLD_POINTS=100000,
        CURRENCY="NGN",
        EXPIRATION_BATCH_SIZE=500,
        MAX_RETRIES=2,
        RETRY_INITIAL_DELAY=0.0,
        RETRY_MAX_DELAY=0.0,
        SPENDING_MILESTONES=[100000, 250000, 500000, 1000000],
    )


@pytest.fixture
def db_engine():
    """In-memory SQLite database with the loyalty tables"""
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def memory_store(clock):
    return InMemoryLedgerStore(clock=clock)


@pytest.fixture
def sql_store(session_factory, clock):
    return SQLAlchemyLedgerStore(
        session_factory, max_retries=2, initial_delay=0.0, max_delay=0.0, clock=clock
    )


@pytest.fixture(params=["memory", "sqlalchemy"])
def store(request):
    """Runs the test once against each ledger store"""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


@pytest.fixture
def file_db_engine(tmp_path):
    """File-backed SQLite database; each thread gets its own connection"""
    engine = build_engine(f"sqlite:///{tmp_path / 'loyalty.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_sql_store(file_db_engine, clock):
    return SQLAlchemyLedgerStore(
        sessionmaker(autocommit=False, autoflush=False, bind=file_db_engine),
        max_retries=5,
        initial_delay=0.01,
        max_delay=0.05,
        clock=clock,
    )


@pytest.fixture(params=["memory", "sqlite_file"])
def threaded_store(request):
    """Ledger stores that are safe to share between threads"""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("file_sql_store")


def _assert_ledger_balanced(store, user_id):
    account = store.get_account(user_id)
    entries = store.list_entries(user_id)
    assert account is not None
    assert account.points_balance == sum(e.points for e in entries)
    assert account.points_balance >= 0

    running = 0
    for entry in entries:
        running += entry.points
        assert entry.balance_after == running, f"entry {entry.id} balance_after drifted"


@pytest.fixture
def assert_ledger_balanced():
    """Checks the cached balance against the sum of the user's ledger entries"""
    return _assert_ledger_balanced


@pytest.fixture
def tier_catalog():
    return default_tier_catalog()


@pytest.fixture
def tier_service(store, tier_catalog):
    return TierService(store, tier_catalog, currency="NGN")


@pytest.fixture
def points_engine(store, tier_service, loyalty_settings, clock):
    return PointsEngine(store, tier_service, settings=loyalty_settings, clock=clock)


@pytest.fixture
def loyalty_engine(store, loyalty_settings, clock):
    return LoyaltyEngine(store, settings=loyalty_settings, clock=clock)
