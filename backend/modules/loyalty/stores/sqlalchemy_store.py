# backend/modules/loyalty/stores/sqlalchemy_store.py

"""
Relational ledger store.

Each ``run_atomic`` call is one database transaction scoped to a single
user. The account row is locked with ``SELECT ... FOR UPDATE`` where the
database supports it, and the mapper's version counter turns any concurrent
write that slipped past the lock (e.g. on SQLite) into a ``StaleDataError``,
which is retried with backoff like deadlocks and lock timeouts.
"""

import logging
import random
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Set

from sqlalchemy import and_
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import LoyaltyError, TransactionFailure
from ..interfaces import AccountSnapshot, AccountTransaction, LedgerStore
from ..models import (
    EXPIRING_ENTRY_TYPES,
    LedgerEntryType,
    LedgerExpirationOffset,
    LoyaltyAccount,
    LoyaltyLedgerEntry,
    UnlockedAchievement,
)

logger = logging.getLogger(__name__)

# Database error codes that indicate retry-able conditions
RETRY_ERROR_CODES = {
    # PostgreSQL
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
    # MySQL
    "1205",  # Lock wait timeout exceeded
    "1213",  # Deadlock found when trying to get lock
    # SQLite
    "database is locked",
    "database table is locked",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_retryable_error(error: Exception) -> bool:
    """
    Check if a database error is transient and the transaction may succeed on retry
    """
    if isinstance(error, StaleDataError):
        return True

    if isinstance(error, (OperationalError, DBAPIError)):
        error_str = str(error).lower()
        if any(code in error_str for code in ["deadlock", "serialization", "lock"]):
            return True

        orig = getattr(error, "orig", None)
        if hasattr(orig, "pgcode"):
            return orig.pgcode in RETRY_ERROR_CODES
        if orig is not None and getattr(orig, "args", None):
            error_code = str(orig.args[0])
            return any(code in error_code for code in RETRY_ERROR_CODES)

    return False


class SQLAlchemyAccountTransaction(AccountTransaction):
    """Account handle bound to an open session holding the account row lock"""

    def __init__(self, session: Session, account: LoyaltyAccount):
        super().__init__(account.user_id)
        self.session = session
        self.account = account

    @property
    def balance(self) -> int:
        return self.account.points_balance

    @property
    def lifetime_spent(self) -> Decimal:
        return Decimal(self.account.lifetime_spent or 0)

    @property
    def created_at(self) -> datetime:
        return self.account.created_at

    def _write_entry(self, entry: LoyaltyLedgerEntry) -> LoyaltyLedgerEntry:
        self.session.add(entry)
        self.account.points_balance = entry.balance_after
        self.session.flush()
        return entry

    def add_spend(self, amount: Decimal) -> None:
        self.account.lifetime_spent = self.lifetime_spent + amount

    def entries(self) -> List[LoyaltyLedgerEntry]:
        return (
            self.session.query(LoyaltyLedgerEntry)
            .filter(LoyaltyLedgerEntry.user_id == self.user_id)
            .order_by(LoyaltyLedgerEntry.created_at, LoyaltyLedgerEntry.id)
            .all()
        )

    def expiration_offsets(self) -> Dict[int, Optional[int]]:
        rows = (
            self.session.query(
                LedgerExpirationOffset.source_entry_id,
                LedgerExpirationOffset.expired_entry_id,
            )
            .filter(LedgerExpirationOffset.user_id == self.user_id)
            .all()
        )
        return {source_id: expired_id for source_id, expired_id in rows}

    def link_expiration(self, expired_entry, source_points, created_at) -> None:
        for source_id, points in source_points.items():
            self.session.add(
                LedgerExpirationOffset(
                    user_id=self.user_id,
                    source_entry_id=source_id,
                    expired_entry_id=expired_entry.id if expired_entry is not None else None,
                    expired_points=points,
                    created_at=created_at,
                )
            )
        self.session.flush()

    def has_entry_reference(self, reference_type: str, reference_id: str) -> bool:
        return (
            self.session.query(LoyaltyLedgerEntry.id)
            .filter(
                LoyaltyLedgerEntry.user_id == self.user_id,
                LoyaltyLedgerEntry.reference_type == reference_type,
                LoyaltyLedgerEntry.reference_id == reference_id,
            )
            .first()
            is not None
        )

    def unlocked_achievement_ids(self) -> Set[str]:
        rows = (
            self.session.query(UnlockedAchievement.achievement_id)
            .filter(UnlockedAchievement.user_id == self.user_id)
            .all()
        )
        return {achievement_id for (achievement_id,) in rows}

    def unlock_achievement(self, achievement_id, reward_points, unlocked_at):
        unlocked = UnlockedAchievement(
            user_id=self.user_id,
            achievement_id=achievement_id,
            reward_points=reward_points,
            unlocked_at=unlocked_at,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(unlocked)
            self.session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.info(
                f"Achievement {achievement_id} already unlocked for user {self.user_id}"
            )
            return None
        savepoint.commit()
        return unlocked


class SQLAlchemyLedgerStore(LedgerStore):
    """Ledger store backed by the loyalty tables"""

    def __init__(
        self,
        session_factory: sessionmaker,
        max_retries: int = 3,
        initial_delay: float = 0.05,
        max_delay: float = 1.0,
        backoff_factor: float = 2.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.clock = clock

    def _session(self) -> Session:
        session = self.session_factory()
        # Entries handed back to callers must stay readable once the session closes
        session.expire_on_commit = False
        return session

    def _lock_account(self, session: Session, user_id: str) -> LoyaltyAccount:
        account = (
            session.query(LoyaltyAccount)
            .filter(LoyaltyAccount.user_id == user_id)
            .with_for_update()
            .first()
        )
        if account is not None:
            return account

        now = self.clock()
        account = LoyaltyAccount(
            user_id=user_id,
            points_balance=0,
            lifetime_spent=Decimal("0"),
            created_at=now,
            updated_at=now,
        )
        savepoint = session.begin_nested()
        try:
            session.add(account)
            session.flush()
        except IntegrityError:
            # Another transaction created the account first
            savepoint.rollback()
            return (
                session.query(LoyaltyAccount)
                .filter(LoyaltyAccount.user_id == user_id)
                .with_for_update()
                .one()
            )
        savepoint.commit()
        return account

    def run_atomic(self, user_id, operation, operation_name="mutation"):
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            session = self._session()
            try:
                account = self._lock_account(session, user_id)
                result = operation(SQLAlchemyAccountTransaction(session, account))
                session.commit()
                return result
            except LoyaltyError:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                retryable = is_retryable_error(e)

                if retryable and attempt < self.max_retries:
                    actual_delay = min(delay, self.max_delay)
                    # Add random jitter (0-25% of delay)
                    actual_delay *= 1 + random.random() * 0.25
                    logger.warning(
                        f"Conflict on {operation_name} for user {user_id} "
                        f"(attempt {attempt + 1}/{self.max_retries + 1}). "
                        f"Retrying in {actual_delay:.2f}s. Error: {str(e)}"
                    )
                    time.sleep(actual_delay)
                    delay *= self.backoff_factor
                    continue

                logger.error(
                    f"Loyalty {operation_name} failed for user {user_id}: {str(e)}"
                )
                raise TransactionFailure(
                    user_id,
                    operation_name,
                    type(e).__name__,
                    retryable=not isinstance(e, IntegrityError),
                ) from e
            except Exception as e:
                session.rollback()
                logger.error(
                    f"Loyalty {operation_name} failed for user {user_id}: {str(e)}",
                    exc_info=True,
                )
                raise TransactionFailure(
                    user_id, operation_name, type(e).__name__, retryable=False
                ) from e
            finally:
                session.close()

    def get_account(self, user_id: str) -> Optional[AccountSnapshot]:
        session = self._session()
        try:
            account = (
                session.query(LoyaltyAccount)
                .filter(LoyaltyAccount.user_id == user_id)
                .first()
            )
            if account is None:
                return None
            return AccountSnapshot(
                user_id=account.user_id,
                points_balance=account.points_balance,
                lifetime_spent=Decimal(account.lifetime_spent or 0),
                created_at=account.created_at,
            )
        finally:
            session.close()

    def list_entries(
        self,
        user_id: str,
        entry_types: Optional[Sequence[LedgerEntryType]] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[LoyaltyLedgerEntry]:
        session = self._session()
        try:
            query = session.query(LoyaltyLedgerEntry).filter(
                LoyaltyLedgerEntry.user_id == user_id
            )
            if entry_types:
                query = query.filter(LoyaltyLedgerEntry.entry_type.in_(list(entry_types)))
            if newest_first:
                query = query.order_by(
                    LoyaltyLedgerEntry.created_at.desc(), LoyaltyLedgerEntry.id.desc()
                )
            else:
                query = query.order_by(LoyaltyLedgerEntry.created_at, LoyaltyLedgerEntry.id)
            if limit is not None:
                query = query.limit(limit)
            return query.all()
        finally:
            session.close()

    def get_expiration_offsets(self, user_id: str) -> Dict[int, Optional[int]]:
        session = self._session()
        try:
            rows = (
                session.query(
                    LedgerExpirationOffset.source_entry_id,
                    LedgerExpirationOffset.expired_entry_id,
                )
                .filter(LedgerExpirationOffset.user_id == user_id)
                .all()
            )
            return {source_id: expired_id for source_id, expired_id in rows}
        finally:
            session.close()

    def users_with_expirable_entries(self, now, limit, after_user_id=None):
        session = self._session()
        try:
            query = (
                session.query(LoyaltyLedgerEntry.user_id)
                .outerjoin(
                    LedgerExpirationOffset,
                    LedgerExpirationOffset.source_entry_id == LoyaltyLedgerEntry.id,
                )
                .filter(
                    and_(
                        LoyaltyLedgerEntry.entry_type.in_(list(EXPIRING_ENTRY_TYPES)),
                        LoyaltyLedgerEntry.expires_at.isnot(None),
                        LoyaltyLedgerEntry.expires_at < now,
                        LedgerExpirationOffset.id.is_(None),
                    )
                )
            )
            if after_user_id is not None:
                query = query.filter(LoyaltyLedgerEntry.user_id > after_user_id)
            rows = (
                query.group_by(LoyaltyLedgerEntry.user_id)
                .order_by(LoyaltyLedgerEntry.user_id)
                .limit(limit)
                .all()
            )
            return [user_id for (user_id,) in rows]
        finally:
            session.close()

    def list_unlocked_achievements(self, user_id: str) -> List[UnlockedAchievement]:
        session = self._session()
        try:
            return (
                session.query(UnlockedAchievement)
                .filter(UnlockedAchievement.user_id == user_id)
                .order_by(UnlockedAchievement.unlocked_at, UnlockedAchievement.id)
                .all()
            )
        finally:
            session.close()

    def top_balances(self, limit: int) -> List[AccountSnapshot]:
        session = self._session()
        try:
            accounts = (
                session.query(LoyaltyAccount)
                .filter(LoyaltyAccount.points_balance > 0)
                .order_by(LoyaltyAccount.points_balance.desc(), LoyaltyAccount.user_id)
                .limit(limit)
                .all()
            )
            return [
                AccountSnapshot(
                    user_id=a.user_id,
                    points_balance=a.points_balance,
                    lifetime_spent=Decimal(a.lifetime_spent or 0),
                    created_at=a.created_at,
                )
                for a in accounts
            ]
        finally:
            session.close()
