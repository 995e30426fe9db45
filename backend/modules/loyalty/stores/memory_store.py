# backend/modules/loyalty/stores/memory_store.py

"""
Process-local ledger store.

Used by tests and single-process tools. Each user has its own lock, and a
transaction only publishes its staged changes when the operation returns.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..exceptions import LoyaltyError, TransactionFailure
from ..interfaces import AccountSnapshot, AccountTransaction, LedgerStore
from ..models import (
    EXPIRING_ENTRY_TYPES,
    LedgerEntryType,
    LoyaltyLedgerEntry,
    UnlockedAchievement,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class _UserState:
    user_id: str
    created_at: datetime
    points_balance: int = 0
    lifetime_spent: Decimal = Decimal("0")
    entries: List[LoyaltyLedgerEntry] = field(default_factory=list)
    offsets: Dict[int, Optional[int]] = field(default_factory=dict)
    achievements: Dict[str, UnlockedAchievement] = field(default_factory=dict)


class InMemoryAccountTransaction(AccountTransaction):
    """Stages changes against a user's state until the store publishes them"""

    def __init__(self, store: "InMemoryLedgerStore", state: _UserState):
        super().__init__(state.user_id)
        self._store = store
        self._state = state
        self._balance = state.points_balance
        self._lifetime_spent = state.lifetime_spent
        self.new_entries: List[LoyaltyLedgerEntry] = []
        self.new_offsets: Dict[int, Optional[int]] = {}
        self.new_achievements: Dict[str, UnlockedAchievement] = {}

    @property
    def balance(self) -> int:
        return self._balance

    @property
    def lifetime_spent(self) -> Decimal:
        return self._lifetime_spent

    @property
    def created_at(self) -> datetime:
        return self._state.created_at

    def _write_entry(self, entry: LoyaltyLedgerEntry) -> LoyaltyLedgerEntry:
        entry.id = self._store._next_id()
        self.new_entries.append(entry)
        self._balance += entry.points
        return entry

    def add_spend(self, amount: Decimal) -> None:
        self._lifetime_spent += amount

    def entries(self) -> List[LoyaltyLedgerEntry]:
        return sorted(
            self._state.entries + self.new_entries,
            key=lambda e: (e.created_at, e.id),
        )

    def expiration_offsets(self) -> Dict[int, Optional[int]]:
        offsets = dict(self._state.offsets)
        offsets.update(self.new_offsets)
        return offsets

    def link_expiration(self, expired_entry, source_points, created_at) -> None:
        expired_id = expired_entry.id if expired_entry is not None else None
        for source_id in source_points:
            self.new_offsets[source_id] = expired_id

    def has_entry_reference(self, reference_type: str, reference_id: str) -> bool:
        return any(
            e.reference_type == reference_type and e.reference_id == reference_id
            for e in self._state.entries + self.new_entries
        )

    def unlocked_achievement_ids(self) -> Set[str]:
        return set(self._state.achievements) | set(self.new_achievements)

    def unlock_achievement(self, achievement_id, reward_points, unlocked_at):
        if achievement_id in self.unlocked_achievement_ids():
            return None
        unlocked = UnlockedAchievement(
            id=self._store._next_id(),
            user_id=self.user_id,
            achievement_id=achievement_id,
            reward_points=reward_points,
            unlocked_at=unlocked_at,
        )
        self.new_achievements[achievement_id] = unlocked
        return unlocked


class InMemoryLedgerStore(LedgerStore):
    """Thread-safe in-memory ledger store"""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self.clock = clock
        self._users: Dict[str, _UserState] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._ids = itertools.count(1)

    def _next_id(self) -> int:
        with self._registry_lock:
            return next(self._ids)

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock

    def run_atomic(self, user_id, operation, operation_name="mutation"):
        with self._lock_for(user_id):
            state = self._users.get(user_id) or _UserState(
                user_id=user_id, created_at=self.clock()
            )
            transaction = InMemoryAccountTransaction(self, state)
            try:
                result = operation(transaction)
                self._publish(state, transaction)
            except LoyaltyError:
                raise
            except Exception as e:
                logger.error(
                    f"In-memory {operation_name} failed for user {user_id}: {e}"
                )
                raise TransactionFailure(user_id, operation_name, str(e)) from e
            return result

    def _publish(self, state: _UserState, transaction: InMemoryAccountTransaction) -> None:
        """Make staged changes visible; called with the user's lock held"""
        state.points_balance = transaction.balance
        state.lifetime_spent = transaction.lifetime_spent
        state.entries.extend(transaction.new_entries)
        state.offsets.update(transaction.new_offsets)
        state.achievements.update(transaction.new_achievements)
        with self._registry_lock:
            self._users[state.user_id] = state

    def get_account(self, user_id: str) -> Optional[AccountSnapshot]:
        state = self._users.get(user_id)
        if state is None:
            return None
        with self._lock_for(user_id):
            return AccountSnapshot(
                user_id=state.user_id,
                points_balance=state.points_balance,
                lifetime_spent=state.lifetime_spent,
                created_at=state.created_at,
            )

    def list_entries(
        self,
        user_id: str,
        entry_types: Optional[Sequence[LedgerEntryType]] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[LoyaltyLedgerEntry]:
        state = self._users.get(user_id)
        if state is None:
            return []
        with self._lock_for(user_id):
            entries = sorted(
                state.entries,
                key=lambda e: (e.created_at, e.id),
                reverse=newest_first,
            )
        if entry_types:
            entries = [e for e in entries if e.entry_type in entry_types]
        if limit is not None:
            entries = entries[:limit]
        return entries

    def get_expiration_offsets(self, user_id: str) -> Dict[int, Optional[int]]:
        state = self._users.get(user_id)
        if state is None:
            return {}
        with self._lock_for(user_id):
            return dict(state.offsets)

    def users_with_expirable_entries(self, now, limit, after_user_id=None):
        user_ids = []
        with self._registry_lock:
            known_user_ids = sorted(self._users)
        for user_id in known_user_ids:
            if after_user_id is not None and user_id <= after_user_id:
                continue
            state = self._users[user_id]
            with self._lock_for(user_id):
                expirable = any(
                    e.entry_type in EXPIRING_ENTRY_TYPES
                    and e.expires_at is not None
                    and e.expires_at < now
                    and e.id not in state.offsets
                    for e in state.entries
                )
            if expirable:
                user_ids.append(user_id)
                if len(user_ids) >= limit:
                    break
        return user_ids

    def list_unlocked_achievements(self, user_id: str) -> List[UnlockedAchievement]:
        state = self._users.get(user_id)
        if state is None:
            return []
        with self._lock_for(user_id):
            return sorted(state.achievements.values(), key=lambda a: (a.unlocked_at, a.id))

    def top_balances(self, limit: int) -> List[AccountSnapshot]:
        with self._registry_lock:
            known_user_ids = list(self._users)
        snapshots = [
            snapshot
            for snapshot in (self.get_account(user_id) for user_id in known_user_ids)
            if snapshot.points_balance > 0
        ]
        snapshots.sort(key=lambda s: (-s.points_balance, s.user_id))
        return snapshots[:limit]
