# backend/modules/loyalty/interfaces/ledger_store.py

"""
Storage contract for the loyalty engine.

A ledger store keeps the append-only points ledger and the per-user balance
projection. All balance mutations go through ``run_atomic``, which serializes
work per user and applies it all-or-nothing.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Set, TypeVar

from ..exceptions import InsufficientPoints
from ..models import LedgerEntryType, LoyaltyLedgerEntry, UnlockedAchievement

T = TypeVar("T")


@dataclass(frozen=True)
class AccountSnapshot:
    """Read-only view of a user's loyalty state"""

    user_id: str
    points_balance: int
    lifetime_spent: Decimal
    created_at: Optional[datetime]


class AccountTransaction(ABC):
    """
    Handle on one user's locked account inside a ``run_atomic`` call.

    Everything written through the handle becomes visible together when the
    operation returns, or not at all if it raises.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id

    @property
    @abstractmethod
    def balance(self) -> int:
        """Current points balance including changes staged in this transaction"""

    @property
    @abstractmethod
    def lifetime_spent(self) -> Decimal:
        pass

    @property
    @abstractmethod
    def created_at(self) -> datetime:
        pass

    def append_entry(
        self,
        entry_type: LedgerEntryType,
        points: int,
        description: str,
        created_at: datetime,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        flagged_for_review: bool = False,
    ) -> LoyaltyLedgerEntry:
        """Append a ledger entry and move the balance by ``points``"""
        new_balance = self.balance + points
        if new_balance < 0:
            raise InsufficientPoints(self.user_id, -points, self.balance)

        entry = LoyaltyLedgerEntry(
            user_id=self.user_id,
            entry_type=entry_type,
            points=points,
            balance_after=new_balance,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
            expires_at=expires_at,
            flagged_for_review=flagged_for_review,
            created_at=created_at,
        )
        return self._write_entry(entry)

    @abstractmethod
    def _write_entry(self, entry: LoyaltyLedgerEntry) -> LoyaltyLedgerEntry:
        """Persist the entry, assign its id and apply ``entry.points`` to the balance"""

    @abstractmethod
    def add_spend(self, amount: Decimal) -> None:
        """Increase lifetime spend; amounts are never negative"""

    @abstractmethod
    def entries(self) -> List[LoyaltyLedgerEntry]:
        """All of the user's entries in chronological order"""

    @abstractmethod
    def expiration_offsets(self) -> Dict[int, Optional[int]]:
        """Map of retired source entry id to the EXPIRED entry id that retired it"""

    @abstractmethod
    def link_expiration(
        self,
        expired_entry: Optional[LoyaltyLedgerEntry],
        source_points: Dict[int, int],
        created_at: datetime,
    ) -> None:
        """Record that each source entry (id -> points expired) is retired"""

    @abstractmethod
    def has_entry_reference(self, reference_type: str, reference_id: str) -> bool:
        pass

    @abstractmethod
    def unlocked_achievement_ids(self) -> Set[str]:
        pass

    @abstractmethod
    def unlock_achievement(
        self, achievement_id: str, reward_points: int, unlocked_at: datetime
    ) -> Optional[UnlockedAchievement]:
        """Insert the unlock; returns None when the user already has it"""


class LedgerStore(ABC):
    """Durable ledger plus balance projection"""

    @abstractmethod
    def run_atomic(
        self,
        user_id: str,
        operation: Callable[[AccountTransaction], T],
        operation_name: str = "mutation",
    ) -> T:
        """
        Run ``operation`` against the user's locked account.

        Commits when the operation returns, rolls back when it raises.
        Loyalty errors raised by the operation propagate unchanged; storage
        failures surface as ``TransactionFailure``.
        """

    @abstractmethod
    def get_account(self, user_id: str) -> Optional[AccountSnapshot]:
        pass

    @abstractmethod
    def list_entries(
        self,
        user_id: str,
        entry_types: Optional[Sequence[LedgerEntryType]] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[LoyaltyLedgerEntry]:
        pass

    @abstractmethod
    def get_expiration_offsets(self, user_id: str) -> Dict[int, Optional[int]]:
        pass

    @abstractmethod
    def users_with_expirable_entries(
        self, now: datetime, limit: int, after_user_id: Optional[str] = None
    ) -> List[str]:
        """
        User ids, in ascending order and strictly after ``after_user_id``, that
        own EARNED/BONUS entries expired before ``now`` and not yet offset.
        """

    @abstractmethod
    def list_unlocked_achievements(self, user_id: str) -> List[UnlockedAchievement]:
        pass

    @abstractmethod
    def top_balances(self, limit: int) -> List[AccountSnapshot]:
        """Accounts with a positive balance, highest first, ties by user id"""
