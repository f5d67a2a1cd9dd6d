"""
Booking model - counseling session bookings.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Text, Integer, DateTime, Index, Uuid, Enum as SQLEnum, text
from sqlalchemy.orm import Mapped, mapped_column

from counselbook.lib.db import Base


class BookingStatus(str, enum.Enum):
    """Booking status state machine."""
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that count as a requester's active booking
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

# No transition leaves these states
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

DEFAULT_REASON = "No reason provided"

# Rows with a recorded payment are exempt so a verified payment always confirms
_ACTIVE_EMAIL_PREDICATE = text("status IN ('pending', 'confirmed') AND payment_id IS NULL")


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Booking(Base):
    """
    Booking entity - a requested counseling session.
    State machine: pending | payment_pending → confirmed → completed (or cancelled).
    """
    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Requester
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Account id when booked by a signed-in user",
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False, default=DEFAULT_REASON)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(
            BookingStatus,
            name="booking_status",
            values_callable=_enum_values,
            native_enum=False,
            length=32,
        ),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # Timing
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    # Session link, minted on first confirmation
    meeting_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Payment (paid flow only)
    order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    amount: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Smallest currency unit (paise, cents)",
    )
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index(
            "uq_bookings_active_email",
            "email",
            unique=True,
            postgresql_where=_ACTIVE_EMAIL_PREDICATE,
            sqlite_where=_ACTIVE_EMAIL_PREDICATE,
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, email={self.email})>"
