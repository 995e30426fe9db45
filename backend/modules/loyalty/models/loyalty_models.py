# backend/modules/loyalty/models/loyalty_models.py

"""
Persistent loyalty state: one account row per user, the append-only points
ledger, expiration offsets and unlocked achievements.
"""

from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from core.database import Base
from core.mixins import CreatedAtMixin, TimestampMixin


class LedgerEntryType(str, Enum):
    """Kinds of point balance changes"""
    EARNED = "earned"            # Points from spend
    REDEEMED = "redeemed"        # Points spent by the user
    BONUS = "bonus"              # Tier multiplier, achievements, promotions
    EXPIRED = "expired"          # Offsets lots past their validity window
    ADJUSTMENT = "adjustment"    # Manual correction


# Entry types that create spendable lots carrying an expiry
EXPIRING_ENTRY_TYPES = (LedgerEntryType.EARNED, LedgerEntryType.BONUS)

# Largest value the Integer points columns hold on every supported database
MAX_POINTS_VALUE = 2_147_483_647


class LoyaltyAccount(Base, TimestampMixin):
    """Current balance projection of a user's ledger"""
    __tablename__ = "loyalty_accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    points_balance = Column(Integer, nullable=False, default=0)
    lifetime_spent = Column(Numeric(14, 2), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="check_points_balance_non_negative"),
        CheckConstraint("lifetime_spent >= 0", name="check_lifetime_spent_non_negative"),
    )

    def __repr__(self):
        return f"<LoyaltyAccount(user_id='{self.user_id}', balance={self.points_balance})>"


class LoyaltyLedgerEntry(Base, CreatedAtMixin):
    """Immutable record of a single point balance change"""
    __tablename__ = "loyalty_ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    entry_type = Column(SQLEnum(LedgerEntryType), nullable=False, index=True)
    points = Column(Integer, nullable=False)  # Positive for credits, negative for debits
    balance_after = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)

    # Opaque link to the booking/payment/promotion that caused the change
    reference_id = Column(String(100), nullable=True)
    reference_type = Column(String(50), nullable=True)

    expires_at = Column(DateTime, nullable=True, index=True)
    flagged_for_review = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("points <> 0", name="check_ledger_points_non_zero"),
        Index("idx_ledger_user_created", "user_id", "created_at"),
        Index("idx_ledger_type_expires", "entry_type", "expires_at"),
        Index("idx_ledger_reference", "reference_type", "reference_id"),
    )

    @property
    def is_credit(self) -> bool:
        return self.points > 0

    def __repr__(self):
        return (
            f"<LoyaltyLedgerEntry(id={self.id}, user_id='{self.user_id}', "
            f"type={self.entry_type}, points={self.points})>"
        )


class LedgerExpirationOffset(Base, CreatedAtMixin):
    """Marks an EARNED/BONUS entry as retired by the expiration sweep.

    ``expired_entry_id`` is empty when the lot had already been fully
    consumed by redemptions, so nothing was left to expire.
    """
    __tablename__ = "loyalty_expiration_offsets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    source_entry_id = Column(
        Integer, ForeignKey("loyalty_ledger_entries.id"), nullable=False, unique=True
    )
    expired_entry_id = Column(
        Integer, ForeignKey("loyalty_ledger_entries.id"), nullable=True, index=True
    )
    expired_points = Column(Integer, nullable=False, default=0)


class UnlockedAchievement(Base):
    """A permanent, one-time achievement unlock for a user"""
    __tablename__ = "loyalty_unlocked_achievements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    achievement_id = Column(String(64), nullable=False)
    unlocked_at = Column(DateTime, nullable=False)
    reward_points = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )

    def __repr__(self):
        return f"<UnlockedAchievement(user_id='{self.user_id}', achievement='{self.achievement_id}')>"
