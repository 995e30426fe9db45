from sqlalchemy import Column, DateTime
from sqlalchemy.sql import func


class CreatedAtMixin:
    """Insert timestamp for append-only tables"""
    created_at = Column(DateTime, default=func.now(), nullable=False)


class TimestampMixin(CreatedAtMixin):
    updated_at = Column(DateTime, default=func.now(),
                        onupdate=func.now(), nullable=False)
