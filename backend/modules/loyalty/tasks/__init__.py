# backend/modules/loyalty/tasks/__init__.py

from .expiration_tasks import (
    PointsExpirationScheduler,
    points_expiration_scheduler,
    start_expiration_scheduler,
    stop_expiration_scheduler,
)

__all__ = [
    "PointsExpirationScheduler",
    "points_expiration_scheduler",
    "start_expiration_scheduler",
    "stop_expiration_scheduler",
]
