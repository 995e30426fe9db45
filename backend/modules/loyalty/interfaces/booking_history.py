# backend/modules/loyalty/interfaces/booking_history.py

from abc import ABC, abstractmethod


class BookingHistory(ABC):
    """Read access to the booking system, owned outside the loyalty engine"""

    @abstractmethod
    def count_completed_bookings(self, user_id: str) -> int:
        """Number of bookings the user has completed, including the current one"""
