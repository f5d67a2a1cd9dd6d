"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from counselbook.models.bookings import Booking, BookingStatus
from counselbook.models.notification_tasks import (
    NotificationTask,
    NotificationKind,
    NotificationStatus,
)

__all__ = [
    "Booking",
    "BookingStatus",
    "NotificationTask",
    "NotificationKind",
    "NotificationStatus",
]
