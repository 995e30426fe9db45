# backend/modules/loyalty/exceptions/loyalty_exceptions.py

from typing import Any, Dict, Optional

from fastapi import status

from core.error_handling import APIError


class LoyaltyError(APIError):
    """Base exception for all loyalty engine errors"""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            details=details,
            error_code=error_code,
        )


class InvalidAmount(LoyaltyError):
    """Raised for non-positive, non-integer or non-finite point values and amounts"""

    def __init__(self, field: str, value: Any, reason: str = "must be a positive integer"):
        self.field = field
        self.value = value
        super().__init__(
            message=f"Invalid {field}: {value!r} {reason}",
            error_code="INVALID_AMOUNT",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"field": field, "value": repr(value), "reason": reason},
        )


class InsufficientPoints(LoyaltyError):
    """Raised when a debit exceeds the user's current balance"""

    def __init__(self, user_id: str, requested: int, available: int):
        self.user_id = user_id
        self.requested = requested
        self.available = available
        super().__init__(
            message=f"Insufficient points: requested {requested}, available {available}",
            error_code="INSUFFICIENT_POINTS",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "user_id": user_id,
                "requested": requested,
                "available": available,
                "shortage": requested - available,
            },
        )


class TransactionFailure(LoyaltyError):
    """Raised when the store failed mid-operation; nothing was applied"""

    def __init__(
        self,
        user_id: Optional[str],
        operation: str,
        reason: str,
        retryable: bool = True,
    ):
        self.user_id = user_id
        self.operation = operation
        self.retryable = retryable
        super().__init__(
            message=f"Loyalty transaction '{operation}' failed for user {user_id}: {reason}",
            error_code="TRANSACTION_FAILURE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={
                "user_id": user_id,
                "operation": operation,
                "retryable": retryable,
            },
        )


class InvalidEvent(LoyaltyError):
    """Raised for unknown event types or payloads that do not match the event shape"""

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        super().__init__(
            message=f"Invalid {event_type!r} event: {reason}",
            error_code="INVALID_EVENT",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"event_type": event_type, "reason": reason},
        )
