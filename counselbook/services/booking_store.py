"""
Booking persistence.

``BookingStore`` is the interface the lifecycle depends on;
``SQLAlchemyBookingStore`` implements it over a SQLAlchemy session. Every
operation is atomic for a single booking row; there are no multi-row
transactions.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from counselbook.lib.errors import ConflictException
from counselbook.lib.logging import get_logger
from counselbook.lib.timeutils import as_utc, utcnow
from counselbook.models.bookings import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
)

logger = get_logger(__name__)


@dataclass
class BookingFilters:
    """Query filters for listing bookings."""
    statuses: Optional[Sequence[BookingStatus]] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    sort: str = "asc"


class BookingStore(ABC):
    """Persistence operations required by the booking lifecycle."""

    @abstractmethod
    def insert(self, booking: Booking) -> Booking:
        """Persist a new booking."""

    @abstractmethod
    def insert_unless_active(self, booking: Booking) -> Tuple[Booking, bool]:
        """
        Insert unless the requester already holds an active booking.

        Returns:
            (booking, created): the new row, or the existing active one
        """

    @abstractmethod
    def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Load a booking by id."""

    @abstractmethod
    def find_most_recent_by_email_with_status(
        self, email: str, statuses: Sequence[BookingStatus]
    ) -> Optional[Booking]:
        """Most recently created booking for an email in one of the statuses."""

    @abstractmethod
    def find_by_email(self, email: str) -> List[Booking]:
        """All bookings for an email, latest session first."""

    @abstractmethod
    def find_many(self, filters: BookingFilters) -> List[Booking]:
        """Bookings matching filters, sorted by scheduled time."""

    @abstractmethod
    def update(self, booking_id: UUID, patch: Dict[str, Any]) -> Optional[Booking]:
        """Apply a field patch. Returns None if the booking does not exist."""

    @abstractmethod
    def confirm(self, booking_id: UUID, meeting_id: str, patch: Dict[str, Any]) -> bool:
        """
        Move a booking to confirmed unless it is already confirmed or terminal.

        The stored meeting id is kept if one exists. Returns True only for
        the caller whose write took effect.
        """


class SQLAlchemyBookingStore(BookingStore):
    """
    BookingStore backed by the ``bookings`` table.
    """

    def __init__(self, db: Session):
        self.db = db

    def insert(self, booking: Booking) -> Booking:
        try:
            self.db.add(booking)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        self.db.refresh(booking)
        return booking

    def insert_unless_active(self, booking: Booking) -> Tuple[Booking, bool]:
        existing = self.find_most_recent_by_email_with_status(booking.email, ACTIVE_STATUSES)
        if existing is not None:
            return existing, False

        try:
            self.db.add(booking)
            self.db.commit()
        except IntegrityError:
            # A concurrent request inserted an active booking first
            self.db.rollback()
            existing = self.find_most_recent_by_email_with_status(booking.email, ACTIVE_STATUSES)
            if existing is None:
                raise
            logger.info(
                "Concurrent booking insert lost, returning existing booking",
                extra={"booking_id": str(existing.id)},
            )
            return existing, False

        self.db.refresh(booking)
        return booking, True

    def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        return self.db.get(Booking, booking_id, populate_existing=True)

    def find_most_recent_by_email_with_status(
        self, email: str, statuses: Sequence[BookingStatus]
    ) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.email == email, Booking.status.in_(list(statuses)))
            .order_by(Booking.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().first()

    def find_by_email(self, email: str) -> List[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.email == email)
            .order_by(Booking.scheduled_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_many(self, filters: BookingFilters) -> List[Booking]:
        stmt = select(Booking)

        if filters.statuses:
            stmt = stmt.where(Booking.status.in_(list(filters.statuses)))
        if filters.user_id:
            stmt = stmt.where(Booking.user_id == filters.user_id)
        if filters.email:
            stmt = stmt.where(Booking.email == filters.email)
        if filters.from_date:
            stmt = stmt.where(Booking.scheduled_at >= as_utc(filters.from_date))
        if filters.to_date:
            stmt = stmt.where(Booking.scheduled_at <= as_utc(filters.to_date))

        if filters.sort == "desc":
            stmt = stmt.order_by(Booking.scheduled_at.desc())
        else:
            stmt = stmt.order_by(Booking.scheduled_at.asc())

        return list(self.db.execute(stmt).scalars().all())

    def update(self, booking_id: UUID, patch: Dict[str, Any]) -> Optional[Booking]:
        booking = self.find_by_id(booking_id)
        if booking is None:
            return None

        for field, value in patch.items():
            setattr(booking, field, value)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictException(
                "Requester already has an active booking",
                details={"booking_id": str(booking_id)},
            ) from e

        self.db.refresh(booking)
        return booking

    def confirm(self, booking_id: UUID, meeting_id: str, patch: Dict[str, Any]) -> bool:
        blocked = (BookingStatus.CONFIRMED, *TERMINAL_STATUSES)
        values = dict(patch)
        values.update(
            status=BookingStatus.CONFIRMED,
            meeting_id=func.coalesce(Booking.meeting_id, meeting_id),
            updated_at=utcnow(),
        )

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.not_in(blocked))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            rowcount = self.db.execute(stmt).rowcount
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictException(
                "Requester already has an active booking",
                details={"booking_id": str(booking_id)},
            ) from e

        return rowcount == 1
