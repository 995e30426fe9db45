# backend/modules/loyalty/exceptions/__init__.py

from .loyalty_exceptions import (
    LoyaltyError,
    InvalidAmount,
    InsufficientPoints,
    TransactionFailure,
    InvalidEvent,
)

__all__ = [
    "LoyaltyError",
    "InvalidAmount",
    "InsufficientPoints",
    "TransactionFailure",
    "InvalidEvent",
]
