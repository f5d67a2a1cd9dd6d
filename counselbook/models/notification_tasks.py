"""
Notification task model - outbound email queue for booking transitions.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, JSON, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from counselbook.lib.db import Base


class NotificationKind(str, enum.Enum):
    """Which booking email a task delivers."""
    CONFIRMATION = "confirmation"
    RESCHEDULE = "reschedule"
    CANCELLATION = "cancellation"


class NotificationStatus(str, enum.Enum):
    """Task delivery status."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class NotificationTask(Base):
    """
    Notification task entity - one queued email.
    Written by the dispatcher, drained by the notification worker.
    """
    __tablename__ = "notification_tasks"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    booking_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    kind: Mapped[NotificationKind] = mapped_column(
        SQLEnum(
            NotificationKind,
            name="notification_kind",
            values_callable=_enum_values,
            native_enum=False,
            length=32,
        ),
        nullable=False,
    )
    recipient: Mapped[str] = mapped_column(String(320), nullable=False)
    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Template data rendered at delivery time",
    )

    # Delivery
    status: Mapped[NotificationStatus] = mapped_column(
        SQLEnum(
            NotificationStatus,
            name="notification_status",
            values_callable=_enum_values,
            native_enum=False,
            length=16,
        ),
        nullable=False,
        default=NotificationStatus.PENDING,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

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

    def __repr__(self) -> str:
        return f"<NotificationTask(id={self.id}, kind={self.kind}, status={self.status})>"
