# backend/core/error_handling.py

"""
Error handling utilities for API routes.

Service code raises ``APIError`` subclasses carrying an HTTP status, a
machine readable ``error_code`` and structured ``details``; route handlers
wrapped with ``handle_api_errors`` turn those (and stray database or
validation errors) into ``HTTPException`` responses with a stable shape.
"""

from typing import Callable, Dict, Any, Optional
from functools import wraps
import logging
import inspect
import traceback

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors"""

    error_code = "API_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)


def handle_api_errors(func: Callable) -> Callable:
    """
    Decorator to handle common API errors with proper status codes and messages.
    Handles both async and sync route functions.

    Usage:
        @router.get("/users/{user_id}/tier")
        @handle_api_errors
        def get_tier(user_id: str, engine: LoyaltyEngine = Depends(get_loyalty_engine)):
            ...
    """

    def handle_exception(e: Exception, func_name: str) -> None:
        if isinstance(e, HTTPException):
            raise e

        if isinstance(e, APIError):
            logger.warning(
                f"API Error in {func_name}: {e.message}",
                extra={"status_code": e.status_code, "details": e.details},
            )
            raise HTTPException(
                status_code=e.status_code,
                detail={
                    "message": e.message,
                    "error_code": e.error_code,
                    "details": e.details,
                },
            )

        if isinstance(e, ValidationError):
            logger.warning(f"Pydantic validation error in {func_name}: {e.errors()}")
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": "Request validation failed", "errors": e.errors()},
            )

        if isinstance(e, ValueError):
            logger.warning(f"Validation error in {func_name}: {str(e)}")
            error_message = str(e).lower()
            if "not found" in error_message:
                status_code = status.HTTP_404_NOT_FOUND
            elif "invalid" in error_message or "must be" in error_message:
                status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
            else:
                status_code = status.HTTP_400_BAD_REQUEST
            raise HTTPException(status_code=status_code, detail={"message": str(e)})

        if isinstance(e, IntegrityError):
            logger.error(f"Database integrity error in {func_name}: {str(e.orig)}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "message": "Database constraint violation",
                    "type": "integrity_error",
                },
            )

        if isinstance(e, OperationalError):
            logger.error(f"Database operational error in {func_name}: {str(e.orig)}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={
                    "message": "Database service temporarily unavailable",
                    "type": "operational_error",
                },
            )

        if isinstance(e, SQLAlchemyError):
            logger.error(f"Database error in {func_name}: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={"message": "Database error occurred", "type": "database_error"},
            )

        logger.error(
            f"Unexpected error in {func_name}: {str(e)}\n{traceback.format_exc()}"
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "An unexpected error occurred"},
        )

    if inspect.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                handle_exception(e, func.__name__)

        return async_wrapper

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            handle_exception(e, func.__name__)

    return sync_wrapper
