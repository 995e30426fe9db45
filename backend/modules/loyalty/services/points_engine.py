# backend/modules/loyalty/services/points_engine.py

"""
Points accrual and redemption.

Every operation here is a single atomic unit against the ledger store:
the ledger entries and the balance change are applied together or not at
all. Listeners registered with ``add_listener`` are told about each
committed change afterwards; a failing listener is logged and never undoes
or blocks the mutation.
"""

import calendar
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Callable, List, Optional, Tuple

from ..config import LoyaltySettings, get_loyalty_settings
from ..exceptions import InsufficientPoints, InvalidAmount
from ..interfaces import AccountTransaction, LedgerStore
from ..models import MAX_POINTS_VALUE, LedgerEntryType, LoyaltyLedgerEntry
from .tier_service import TierService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length"""
    month = value.month - 1 + months
    year = value.year + month // 12
    month = month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class PointsChange:
    """A committed balance change, as seen by listeners"""

    user_id: str
    operation: str
    balance_before: int
    balance_after: int
    lifetime_spent_before: Decimal
    lifetime_spent_after: Decimal
    entries: Tuple[LoyaltyLedgerEntry, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class EarnResult:
    """Outcome of a spend-linked earn: the nominal entry and the tier bonus"""

    user_id: str
    earned: Optional[LoyaltyLedgerEntry]
    bonus: Optional[LoyaltyLedgerEntry]
    balance: int
    tier_applied: str
    point_multiplier: float

    @property
    def total_points(self) -> int:
        return sum(entry.points for entry in (self.earned, self.bonus) if entry is not None)


class PointsEngine:
    """Issues EARNED, REDEEMED, BONUS and ADJUSTMENT entries"""

    def __init__(
        self,
        store: LedgerStore,
        tier_service: TierService,
        settings: Optional[LoyaltySettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.tier_service = tier_service
        self.settings = settings or get_loyalty_settings()
        self.clock = clock
        self._listeners: List[Callable[[PointsChange], None]] = []

    # ========== Listeners ==========

    def add_listener(self, listener: Callable[[PointsChange], None]) -> None:
        self._listeners.append(listener)

    def notify(self, change: PointsChange) -> None:
        for listener in self._listeners:
            try:
                listener(change)
            except Exception as e:
                logger.error(
                    f"Points listener {getattr(listener, '__name__', listener)!r} failed "
                    f"for user {change.user_id} after {change.operation}: {e}",
                    exc_info=True,
                )

    # ========== Validation ==========

    @staticmethod
    def validate_points(value: Any, field_name: str = "points") -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidAmount(field_name, value)
        if value <= 0:
            raise InvalidAmount(field_name, value)
        if value > MAX_POINTS_VALUE:
            raise InvalidAmount(field_name, value, f"must not exceed {MAX_POINTS_VALUE}")
        return value

    @staticmethod
    def validate_amount(
        value: Any, field_name: str, allow_zero: bool = False
    ) -> Decimal:
        if isinstance(value, bool) or value is None:
            raise InvalidAmount(field_name, value, "must be a number")
        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidAmount(field_name, value, "must be finite")
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidAmount(field_name, value, "must be a number")
        if not amount.is_finite():
            raise InvalidAmount(field_name, value, "must be finite")
        if amount < 0 or (amount == 0 and not allow_zero):
            raise InvalidAmount(
                field_name,
                value,
                "must not be negative" if allow_zero else "must be positive",
            )
        return amount

    def expires_at(self, now: datetime) -> datetime:
        return add_months(now, self.settings.POINTS_VALIDITY_MONTHS)

    def _needs_review(self, user_id: str, points: int, entry_type: LedgerEntryType) -> bool:
        threshold = self.settings.REVIEW_THRESHOLD_POINTS
        if threshold is None or points <= threshold:
            return False
        logger.warning(
            f"Flagging {entry_type.value} grant of {points} points for user {user_id} "
            f"for review (threshold {threshold})",
            extra={"user_id": user_id, "points": points, "threshold": threshold},
        )
        return True

    # ========== Transaction helpers ==========

    def credit(
        self,
        transaction: AccountTransaction,
        entry_type: LedgerEntryType,
        points: int,
        description: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
    ) -> LoyaltyLedgerEntry:
        """Append an expiring EARNED/BONUS entry inside an open transaction"""
        now = self.clock()
        return transaction.append_entry(
            entry_type=entry_type,
            points=points,
            description=description,
            created_at=now,
            reference_id=reference_id,
            reference_type=reference_type,
            expires_at=self.expires_at(now),
            flagged_for_review=self._needs_review(transaction.user_id, points, entry_type),
        )

    def run_mutation(
        self,
        user_id: str,
        operation_name: str,
        operation: Callable[[AccountTransaction], Any],
    ) -> Tuple[Any, PointsChange]:
        """
        Run ``operation`` atomically for one user and notify listeners.

        ``operation`` returns ``(result, entries_written)``.
        """

        def wrapped(transaction: AccountTransaction):
            balance_before = transaction.balance
            spent_before = transaction.lifetime_spent
            result, entries = operation(transaction)
            change = PointsChange(
                user_id=user_id,
                operation=operation_name,
                balance_before=balance_before,
                balance_after=transaction.balance,
                lifetime_spent_before=spent_before,
                lifetime_spent_after=transaction.lifetime_spent,
                entries=tuple(entries),
            )
            return result, change

        result, change = self.store.run_atomic(user_id, wrapped, operation_name)
        self.notify(change)
        return result, change

    # ========== Operations ==========

    def earn_points(
        self,
        user_id: str,
        points: int,
        description: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        spend_amount: Optional[Any] = None,
    ) -> LoyaltyLedgerEntry:
        """
        Credit earned points, valid for the configured number of months.

        When ``spend_amount`` is given the event is spend-linked and the
        user's lifetime spend grows by it in the same transaction.

        Raises:
            InvalidAmount: points not a positive integer, or a bad spend amount
        """
        points = self.validate_points(points)
        spend = (
            self.validate_amount(spend_amount, "spend_amount")
            if spend_amount is not None
            else None
        )

        def operation(transaction: AccountTransaction):
            entry = self.credit(
                transaction,
                LedgerEntryType.EARNED,
                points,
                description,
                reference_id,
                reference_type,
            )
            if spend is not None:
                transaction.add_spend(spend)
            return entry, [entry]

        entry, change = self.run_mutation(user_id, "earn_points", operation)
        logger.info(
            f"User {user_id} earned {points} points, balance {change.balance_after}"
        )
        return entry

    def earn_for_spend(
        self,
        user_id: str,
        amount: Any,
        loyalty_rate: Any,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
    ) -> EarnResult:
        """
        Convert a monetary spend into points at the restaurant's loyalty rate.

        Base points are floor(amount * loyalty_rate). If the user's tier
        before this transaction has a multiplier above 1, the extra
        floor(base * (multiplier - 1)) is written as a separate BONUS entry.
        """
        amount = self.validate_amount(amount, "amount")
        rate = self.validate_amount(loyalty_rate, "loyalty_rate", allow_zero=True)
        base_points = int((amount * rate).to_integral_value(rounding=ROUND_FLOOR))
        if base_points > MAX_POINTS_VALUE:
            raise InvalidAmount(
                "amount", str(amount), f"earns more than {MAX_POINTS_VALUE} points at rate {rate}"
            )
        description = description or f"Points earned on spend of {amount}"

        def operation(transaction: AccountTransaction):
            tier = self.tier_service.tier_for_balance(transaction.balance)
            multiplier = tier.benefits.point_multiplier
            earned = bonus = None

            if base_points > 0:
                earned = self.credit(
                    transaction,
                    LedgerEntryType.EARNED,
                    base_points,
                    description,
                    reference_id,
                    reference_type,
                )
                bonus_points = int(
                    (Decimal(base_points) * (Decimal(str(multiplier)) - 1)).to_integral_value(
                        rounding=ROUND_FLOOR
                    )
                )
                if bonus_points > 0:
                    bonus = self.credit(
                        transaction,
                        LedgerEntryType.BONUS,
                        bonus_points,
                        f"{tier.name} tier bonus ({multiplier}x) on {reference_type or 'spend'}",
                        reference_id,
                        reference_type,
                    )

            transaction.add_spend(amount)
            result = EarnResult(
                user_id=user_id,
                earned=earned,
                bonus=bonus,
                balance=transaction.balance,
                tier_applied=tier.name,
                point_multiplier=multiplier,
            )
            return result, [e for e in (earned, bonus) if e is not None]

        result, _ = self.run_mutation(user_id, "earn_for_spend", operation)
        logger.info(
            f"User {user_id} earned {result.total_points} points on spend of {amount} "
            f"at rate {rate} ({result.tier_applied}, {result.point_multiplier}x)"
        )
        return result

    def redeem_points(
        self,
        user_id: str,
        points: int,
        description: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
    ) -> LoyaltyLedgerEntry:
        """
        Debit points. The balance check and the write share one locked
        transaction, so concurrent redemptions cannot both pass the check.

        Raises:
            InvalidAmount: points not a positive integer
            InsufficientPoints: points exceed the current balance
        """
        points = self.validate_points(points)

        def operation(transaction: AccountTransaction):
            if points > transaction.balance:
                raise InsufficientPoints(user_id, points, transaction.balance)
            entry = transaction.append_entry(
                entry_type=LedgerEntryType.REDEEMED,
                points=-points,
                description=description,
                created_at=self.clock(),
                reference_id=reference_id,
                reference_type=reference_type,
            )
            return entry, [entry]

        entry, change = self.run_mutation(user_id, "redeem_points", operation)
        logger.info(
            f"User {user_id} redeemed {points} points, balance {change.balance_after}"
        )
        return entry

    def award_bonus(
        self,
        user_id: str,
        points: int,
        description: str,
        reason: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
    ) -> LoyaltyLedgerEntry:
        """Credit expiring BONUS points (promotions, multipliers, rewards)"""
        points = self.validate_points(points)

        def operation(transaction: AccountTransaction):
            entry = self.credit(
                transaction,
                LedgerEntryType.BONUS,
                points,
                description,
                reference_id,
                reference_type or reason,
            )
            return entry, [entry]

        entry, _ = self.run_mutation(user_id, "award_bonus", operation)
        logger.info(f"Awarded {points} bonus points to user {user_id} ({reason})")
        return entry

    def adjust_points(self, user_id: str, points: int, reason: str) -> LoyaltyLedgerEntry:
        """
        Manual correction in either direction. Adjustments do not expire.

        Raises:
            InvalidAmount: points is zero or not an integer
            InsufficientPoints: a deduction larger than the balance
        """
        if isinstance(points, bool) or not isinstance(points, int) or points == 0:
            raise InvalidAmount("points", points, "must be a non-zero integer")
        if abs(points) > MAX_POINTS_VALUE:
            raise InvalidAmount("points", points, f"must not exceed {MAX_POINTS_VALUE}")

        def operation(transaction: AccountTransaction):
            if points < 0 and -points > transaction.balance:
                raise InsufficientPoints(user_id, -points, transaction.balance)
            entry = transaction.append_entry(
                entry_type=LedgerEntryType.ADJUSTMENT,
                points=points,
                description=reason,
                created_at=self.clock(),
                reference_type="adjustment",
                flagged_for_review=self._needs_review(
                    user_id, abs(points), LedgerEntryType.ADJUSTMENT
                ),
            )
            return entry, [entry]

        entry, _ = self.run_mutation(user_id, "adjust_points", operation)
        logger.info(f"Adjusted user {user_id} by {points} points: {reason}")
        return entry

    def award_birthday_bonus(self, user_id: str, year: int) -> Optional[LoyaltyLedgerEntry]:
        """
        Credit the current tier's birthday bonus once per user per year.
        Returns None when this year's bonus was already awarded.
        """
        reference_id = f"birthday-{year}"

        def operation(transaction: AccountTransaction):
            if transaction.has_entry_reference("birthday", reference_id):
                return None, []
            tier = self.tier_service.tier_for_balance(transaction.balance)
            points = tier.benefits.birthday_bonus_points
            if points <= 0:
                return None, []
            entry = self.credit(
                transaction,
                LedgerEntryType.BONUS,
                points,
                f"Happy birthday! {tier.name} tier birthday bonus",
                reference_id,
                "birthday",
            )
            return entry, [entry]

        entry, _ = self.run_mutation(user_id, "award_birthday_bonus", operation)
        if entry is None:
            logger.info(f"Birthday bonus for {year} already awarded to user {user_id}")
        return entry
