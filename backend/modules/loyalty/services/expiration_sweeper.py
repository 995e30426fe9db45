# backend/modules/loyalty/services/expiration_sweeper.py

"""
Batch retirement of points past their validity window.

Every EARNED/BONUS entry is a lot. Replaying a user's ledger in order,
each debit consumes the open lots that expire soonest first, so
redemptions use up the oldest points before they can expire. A lot past
its ``expires_at`` that no earlier sweep has offset is expired for
whatever value is left in it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from ..config import LoyaltySettings, get_loyalty_settings
from ..interfaces import AccountTransaction, LedgerStore
from ..models import EXPIRING_ENTRY_TYPES, LedgerEntryType, LoyaltyLedgerEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _consumption_order(entry: LoyaltyLedgerEntry):
    # Non-expiring lots (positive adjustments) are consumed last
    return (entry.expires_at is None, entry.expires_at or datetime.max, entry.created_at, entry.id)


def remaining_lot_values(
    entries: Iterable[LoyaltyLedgerEntry],
    offsets: Dict[int, Optional[int]],
) -> Dict[int, int]:
    """
    Replay a user's ledger and return the unconsumed value of every credit lot.

    ``entries`` must be in chronological order. EXPIRED entries retire
    exactly the lots linked to them through ``offsets``; every other debit
    consumes open lots soonest-expiring first.
    """
    expired_by: Dict[int, List[int]] = {}
    for source_id, expired_id in offsets.items():
        if expired_id is not None:
            expired_by.setdefault(expired_id, []).append(source_id)

    remaining: Dict[int, int] = {}
    open_lots: List[LoyaltyLedgerEntry] = []

    for entry in entries:
        if entry.points > 0:
            remaining[entry.id] = entry.points
            open_lots.append(entry)
            continue

        if entry.entry_type == LedgerEntryType.EXPIRED and entry.id in expired_by:
            for source_id in expired_by[entry.id]:
                remaining[source_id] = 0
            open_lots = [lot for lot in open_lots if remaining[lot.id] > 0]
            continue

        to_consume = -entry.points
        open_lots.sort(key=_consumption_order)
        for lot in open_lots:
            if to_consume == 0:
                break
            taken = min(remaining[lot.id], to_consume)
            remaining[lot.id] -= taken
            to_consume -= taken
        open_lots = [lot for lot in open_lots if remaining[lot.id] > 0]

        if to_consume:
            logger.warning(
                f"Ledger for user {entry.user_id} debits {to_consume} points "
                f"more than its open lots at entry {entry.id}"
            )

    return remaining


@dataclass
class ExpirationSweepResult:
    users_scanned: int = 0
    users_expired: int = 0
    points_expired: int = 0
    failed_user_ids: List[str] = field(default_factory=list)


class ExpirationSweeper:
    """Writes one EXPIRED entry per affected user, one user per transaction"""

    def __init__(
        self,
        store: LedgerStore,
        settings: Optional[LoyaltySettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.settings = settings or get_loyalty_settings()
        self.clock = clock

    def expire_user(self, transaction: AccountTransaction, now: datetime) -> int:
        """Expire a single user's stale lots; returns the points removed"""
        offsets = transaction.expiration_offsets()
        entries = transaction.entries()
        remaining = remaining_lot_values(entries, offsets)

        candidates = [
            entry
            for entry in entries
            if entry.entry_type in EXPIRING_ENTRY_TYPES
            and entry.expires_at is not None
            and entry.expires_at < now
            and entry.id not in offsets
        ]
        if not candidates:
            return 0

        expiring = sum(remaining[entry.id] for entry in candidates)
        # Never take the balance below zero
        amount = min(expiring, transaction.balance)

        expired_entry = None
        if amount > 0:
            expired_entry = transaction.append_entry(
                entry_type=LedgerEntryType.EXPIRED,
                points=-amount,
                description=f"Expired {amount} points from {len(candidates)} earning(s)",
                created_at=now,
                reference_type="expiration",
            )

        transaction.link_expiration(
            expired_entry,
            {entry.id: remaining[entry.id] for entry in candidates},
            created_at=now,
        )
        return amount

    def sweep(
        self, now: Optional[datetime] = None, batch_size: Optional[int] = None
    ) -> ExpirationSweepResult:
        now = now or self.clock()
        batch_size = batch_size or self.settings.EXPIRATION_BATCH_SIZE
        result = ExpirationSweepResult()
        after_user_id: Optional[str] = None

        logger.info(f"Starting points expiration sweep as of {now.isoformat()}")

        while True:
            user_ids = self.store.users_with_expirable_entries(
                now, batch_size, after_user_id
            )
            if not user_ids:
                break

            for user_id in user_ids:
                result.users_scanned += 1
                try:
                    expired = self.store.run_atomic(
                        user_id,
                        lambda transaction: self.expire_user(transaction, now),
                        "expire_points",
                    )
                except Exception as e:
                    logger.error(
                        f"Points expiration failed for user {user_id}: {str(e)}",
                        exc_info=True,
                    )
                    result.failed_user_ids.append(user_id)
                    continue

                if expired > 0:
                    result.users_expired += 1
                    result.points_expired += expired
                    logger.info(f"Expired {expired} points for user {user_id}")

            after_user_id = user_ids[-1]
            if len(user_ids) < batch_size:
                break

        logger.info(
            f"Expiration sweep finished: {result.users_expired} user(s), "
            f"{result.points_expired} points, {len(result.failed_user_ids)} failure(s)"
        )
        return result

    def expire_old_points(self, now: Optional[datetime] = None) -> int:
        """Run a full sweep; returns the number of EXPIRED entries written"""
        return self.sweep(now=now).users_expired

    def get_expiring_points(
        self, user_id: str, within_days: int = 30, now: Optional[datetime] = None
    ) -> int:
        """Points that will expire in the next ``within_days`` days"""
        now = now or self.clock()
        horizon = now + timedelta(days=within_days)
        entries = self.store.list_entries(user_id)
        offsets = self.store.get_expiration_offsets(user_id)
        remaining = remaining_lot_values(entries, offsets)
        return sum(
            remaining[entry.id]
            for entry in entries
            if entry.entry_type in EXPIRING_ENTRY_TYPES
            and entry.expires_at is not None
            and now < entry.expires_at <= horizon
            and entry.id not in offsets
        )
