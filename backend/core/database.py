# backend/core/database.py

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings
from .query_logger import setup_query_logging

DATABASE_URL = settings.database_url


def _enable_sqlite_transactions(engine):
    """
    Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside the outer transaction.

    BEGIN IMMEDIATE takes the write lock up front, so concurrent writers wait
    on the busy timeout instead of failing when a read lock is upgraded.
    """

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False):
    """
    Create an engine with the pool settings appropriate for the backend.

    ``sqlite:///:memory:`` uses a single shared connection (StaticPool), so
    it is only suitable for single-threaded use such as tests. Concurrent
    callers need a file-backed SQLite database or a server database.
    """
    engine_kwargs = {
        "echo": echo,
        "pool_pre_ping": True,
    }

    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_size"] = settings.db_pool_size
        engine_kwargs["max_overflow"] = settings.db_max_overflow

    new_engine = create_engine(url, **engine_kwargs)
    if new_engine.dialect.name == "sqlite":
        _enable_sqlite_transactions(new_engine)
    setup_query_logging(new_engine)
    return new_engine


engine = build_engine(DATABASE_URL, echo=settings.log_sql_queries)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

