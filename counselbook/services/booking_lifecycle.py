"""Booking lifecycle service.

Orchestrates every state change a booking goes through:
1. Create: direct booking, deduplicated per requester email
2. Initiate: paid booking gated behind a gateway order
3. Verify payment: check the gateway signature, then confirm
4. Update: confirm, reschedule, or edit fields
5. Cancel: soft-cancel with a notification

State machine::

    pending ─────────┐
                     ├──> confirmed ──> completed
    payment_pending ─┘        │
          (any non-terminal) ─┴──> cancelled

``completed`` and ``cancelled`` are terminal. Notifications are queued
through the dispatcher and never block or undo a transition.
"""
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from counselbook.lib.errors import (
    AppException,
    ConflictException,
    InvalidSignatureException,
    NotFoundException,
    PaymentGatewayUnavailableException,
    ValidationException,
)
from counselbook.lib.logging import get_logger
from counselbook.lib.meeting_links import MeetingIdGenerator, get_meeting_id_generator
from counselbook.lib import payment_signature
from counselbook.lib.settings import settings
from counselbook.lib.timeutils import as_utc, parse_datetime
from counselbook.models.bookings import (
    ACTIVE_STATUSES,
    DEFAULT_REASON,
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
)
from counselbook.services.booking_store import BookingFilters, BookingStore, SQLAlchemyBookingStore
from counselbook.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from counselbook.services.payment_gateway import PaymentGateway, PaymentOrder, get_payment_gateway
from counselbook.services.results import Err, Ok, Result

logger = get_logger(__name__)


CANCEL_CONFIRMATION = {"message": "Booking cancelled successfully"}

# Fields an update may touch, keyed by their request names
PATCHABLE_FIELDS = ("name", "email", "when", "reason", "status")


class BookingLifecycle:
    """Booking state machine with injected collaborators.

    Every operation raises from the ``counselbook.lib.errors`` taxonomy;
    ``attempt`` wraps any of them into an ``Ok``/``Err`` result instead.
    """

    def __init__(
        self,
        store: BookingStore,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher,
        meeting_ids: MeetingIdGenerator,
        payment_secret: Optional[str],
    ):
        """Initialize lifecycle.

        Args:
            store: Booking persistence
            gateway: Payment order client
            dispatcher: Notification queue
            meeting_ids: Meeting id generator
            payment_secret: Shared secret for payment callback signatures
        """
        self.store = store
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.meeting_ids = meeting_ids
        self.payment_secret = payment_secret

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        email: str,
        when: Union[str, datetime],
        reason: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Booking:
        """Create a direct (unpaid) booking.

        If the requester already holds a pending or confirmed booking, that
        booking is returned unchanged instead.

        Args:
            name: Requester name
            email: Requester email (trimmed before storage)
            when: Session time, ISO-8601 string or datetime
            reason: Free-text reason, defaults to "No reason provided"
            user_id: Authenticated account id, if any

        Returns:
            The new pending booking, or the existing active one

        Raises:
            ValidationException: name, email or when missing or malformed

        Example:
            >>> booking = lifecycle.create("Asha", "asha@example.com", "2026-11-02T10:00:00Z")
            >>> booking.status
            <BookingStatus.PENDING: 'pending'>
        """
        name, email, scheduled_at = self._validate_request(name, email, when)

        booking = Booking(
            name=name,
            email=email,
            scheduled_at=scheduled_at,
            reason=reason or DEFAULT_REASON,
            user_id=user_id,
            status=BookingStatus.PENDING,
        )
        stored, created = self.store.insert_unless_active(booking)

        if created:
            logger.info("Booking created", extra={"booking_id": str(stored.id)})
        else:
            logger.info(
                "Requester already has an active booking, returning it",
                extra={"booking_id": str(stored.id), "status": stored.status.value},
            )
        return stored

    def initiate(
        self,
        name: str,
        email: str,
        when: Union[str, datetime],
        reason: Optional[str] = None,
        amount: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[Booking, PaymentOrder]:
        """Start a paid booking.

        A requester who already holds a pending or confirmed booking is
        rejected before any order is created. The gateway order is created
        first, with the new booking id as the receipt; the booking row is only
        written once the order exists.

        Args:
            name: Requester name
            email: Requester email
            when: Session time
            reason: Free-text reason
            amount: Amount in the smallest currency unit (defaults to the
                configured session price)
            user_id: Authenticated account id, if any

        Returns:
            (booking in payment_pending, gateway order)

        Raises:
            ValidationException: Invalid request fields or amount
            ConflictException: Requester already has an active booking, or
                the booking could not be stored after the order was created
            PaymentGatewayUnavailableException: Order could not be created
        """
        name, email, scheduled_at = self._validate_request(name, email, when)

        if amount is None:
            amount = settings.session_price_amount
        if amount <= 0:
            raise ValidationException("Invalid booking request", errors={"amount": "must be positive"})

        existing = self.store.find_most_recent_by_email_with_status(email, ACTIVE_STATUSES)
        if existing is not None:
            raise ConflictException(
                "Requester already has an active booking",
                details={"booking_id": str(existing.id), "status": existing.status.value},
            )

        booking_id = uuid4()
        order = self.gateway.create_order(
            amount=amount,
            currency=settings.session_price_currency,
            receipt=str(booking_id),
        )

        booking = Booking(
            id=booking_id,
            name=name,
            email=email,
            scheduled_at=scheduled_at,
            reason=reason or DEFAULT_REASON,
            user_id=user_id,
            status=BookingStatus.PAYMENT_PENDING,
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
        )
        try:
            booking = self.store.insert(booking)
        except IntegrityError as e:
            logger.error(
                "Booking insert failed after order creation, order left unused",
                extra={"booking_id": str(booking_id), "order_id": order.id},
            )
            raise ConflictException(
                "Booking could not be stored",
                details={"booking_id": str(booking_id), "order_id": order.id},
            ) from e

        logger.info(
            "Paid booking initiated",
            extra={"booking_id": str(booking.id), "order_id": order.id, "amount": order.amount},
        )
        return booking, order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def verify_payment(
        self,
        booking_id: Union[UUID, str],
        payment_id: str,
        order_id: str,
        signature: str,
    ) -> Booking:
        """Verify a payment callback and confirm the booking.

        Verifying an already confirmed booking returns it unchanged. A
        signature mismatch leaves the booking untouched.

        Args:
            booking_id: Booking to confirm
            payment_id: Gateway payment id
            order_id: Gateway order id
            signature: Hex HMAC-SHA256 of ``order_id|payment_id``

        Returns:
            Confirmed booking

        Raises:
            NotFoundException: Booking does not exist
            InvalidSignatureException: Signature or order id mismatch
            ConflictException: Booking is cancelled or completed
            PaymentGatewayUnavailableException: No payment secret configured
        """
        booking = self._get_or_raise(booking_id)

        if booking.status == BookingStatus.CONFIRMED:
            logger.info("Payment already verified", extra={"booking_id": str(booking.id)})
            return booking

        if not self.payment_secret:
            raise PaymentGatewayUnavailableException("Payment gateway not configured")

        if booking.order_id and order_id != booking.order_id:
            logger.warning(
                "Payment callback order does not match booking",
                extra={"booking_id": str(booking.id), "order_id": order_id},
            )
            raise InvalidSignatureException()

        if not payment_signature.verify(self.payment_secret, order_id, payment_id, signature):
            logger.warning(
                "Payment signature mismatch",
                extra={"booking_id": str(booking.id), "order_id": order_id},
            )
            raise InvalidSignatureException()

        if booking.status in TERMINAL_STATUSES:
            raise ConflictException(
                f"Cannot confirm a {booking.status.value} booking",
                details={"booking_id": str(booking.id), "status": booking.status.value},
            )

        patch: Dict[str, Any] = {"payment_id": payment_id}
        if not booking.order_id:
            patch["order_id"] = order_id
        return self._confirm(booking, patch)

    def update(self, booking_id: Union[UUID, str], patch: Dict[str, Any]) -> Booking:
        """Apply an administrative patch.

        Three branches, checked in order:
        - status becomes confirmed: mint the meeting id if needed, persist
          the rest of the patch, queue a confirmation email
        - session time changes: persist, queue a reschedule email
        - anything else: persist, no email

        Args:
            booking_id: Booking to update
            patch: Any of name, email, when, reason, status. None values are
                ignored.

        Returns:
            Updated booking

        Raises:
            NotFoundException: Booking does not exist
            ValidationException: Unknown field or malformed value
            ConflictException: Status or time change on a terminal booking,
                or the change would give the requester two active bookings
        """
        fields = self._normalize_patch(patch)
        booking = self._get_or_raise(booking_id)

        new_status = fields.get("status")
        status_changes = new_status is not None and new_status != booking.status
        time_changes = (
            "scheduled_at" in fields
            and as_utc(fields["scheduled_at"]) != as_utc(booking.scheduled_at)
        )

        if booking.status in TERMINAL_STATUSES and (status_changes or time_changes):
            raise ConflictException(
                f"Cannot modify a {booking.status.value} booking",
                details={"booking_id": str(booking.id), "status": booking.status.value},
            )

        if new_status == BookingStatus.CONFIRMED and booking.status != BookingStatus.CONFIRMED:
            rest = {k: v for k, v in fields.items() if k != "status"}
            return self._confirm(booking, rest)

        if not fields:
            return booking

        updated = self.store.update(booking.id, fields)
        if updated is None:
            raise NotFoundException("Booking", str(booking.id))

        if time_changes:
            self.dispatcher.send_reschedule(updated, updated.scheduled_at)
            logger.info(
                "Booking rescheduled",
                extra={"booking_id": str(updated.id), "scheduled_at": as_utc(updated.scheduled_at)},
            )
        else:
            logger.info(
                "Booking updated",
                extra={"booking_id": str(updated.id), "fields": sorted(fields)},
            )
        return updated

    def cancel(self, booking_id: Union[UUID, str]) -> Dict[str, str]:
        """Cancel a booking and queue a cancellation email.

        Cancelling an already cancelled booking re-sends the email.

        Raises:
            NotFoundException: Booking does not exist
            ConflictException: Booking is completed
        """
        booking = self._get_or_raise(booking_id)

        if booking.status == BookingStatus.COMPLETED:
            raise ConflictException(
                "Cannot cancel a completed booking",
                details={"booking_id": str(booking.id), "status": booking.status.value},
            )

        if booking.status != BookingStatus.CANCELLED:
            booking = self.store.update(booking.id, {"status": BookingStatus.CANCELLED})
            if booking is None:
                raise NotFoundException("Booking", str(booking_id))
            logger.info("Booking cancelled", extra={"booking_id": str(booking.id)})

        self.dispatcher.send_cancellation(booking)
        return dict(CANCEL_CONFIRMATION)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self, filters: Optional[BookingFilters] = None) -> List[Booking]:
        """List bookings by status, date window and requester."""
        filters = filters or BookingFilters()
        if filters.sort not in ("asc", "desc"):
            raise ValidationException("Invalid sort order", errors={"sort": "must be asc or desc"})
        if filters.from_date and filters.to_date and as_utc(filters.from_date) > as_utc(filters.to_date):
            raise ValidationException("Invalid date range", errors={"fromDate": "must not be after toDate"})
        return self.store.find_many(replace(filters, email=filters.email.strip() if filters.email else None))

    def get_by_id(self, booking_id: Union[UUID, str]) -> Booking:
        return self._get_or_raise(booking_id)

    def get_by_email(self, email: str) -> List[Booking]:
        """All bookings for a requester, latest session first."""
        return self.store.find_by_email((email or "").strip())

    def attempt(self, operation: Union[str, Callable[..., Any]], *args, **kwargs) -> Result:
        """Run an operation, returning ``Ok(value)`` or ``Err(exception)``.

        Only application exceptions are captured; anything else propagates.

        Example:
            >>> result = lifecycle.attempt("cancel", booking_id)
            >>> result.ok
            True
        """
        func = getattr(self, operation) if isinstance(operation, str) else operation
        try:
            return Ok(func(*args, **kwargs))
        except AppException as e:
            return Err(e)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _confirm(self, booking: Booking, patch: Dict[str, Any]) -> Booking:
        """Confirm with a conditional write; only the winning writer notifies."""
        meeting_id = booking.meeting_id or self.meeting_ids.generate(booking.email)

        won = self.store.confirm(booking.id, meeting_id, patch)
        stored = self.store.find_by_id(booking.id)
        if stored is None:
            raise NotFoundException("Booking", str(booking.id))

        if won:
            logger.info(
                "Booking confirmed",
                extra={"booking_id": str(stored.id), "meeting_id": stored.meeting_id},
            )
            self.dispatcher.send_confirmation(stored, stored.meeting_id)
        elif stored.status in TERMINAL_STATUSES:
            raise ConflictException(
                f"Cannot confirm a {stored.status.value} booking",
                details={"booking_id": str(stored.id), "status": stored.status.value},
            )
        else:
            logger.info(
                "Booking was confirmed by a concurrent request",
                extra={"booking_id": str(stored.id)},
            )
        return stored

    def _get_or_raise(self, booking_id: Union[UUID, str]) -> Booking:
        try:
            key = booking_id if isinstance(booking_id, UUID) else UUID(str(booking_id))
        except ValueError:
            raise NotFoundException("Booking", str(booking_id))

        booking = self.store.find_by_id(key)
        if booking is None:
            raise NotFoundException("Booking", str(booking_id))
        return booking

    @staticmethod
    def _validate_request(name, email, when) -> Tuple[str, str, datetime]:
        errors = {}
        name = (name or "").strip()
        email = (email or "").strip()

        if not name:
            errors["name"] = "required"
        if not email:
            errors["email"] = "required"

        scheduled_at = None
        if when is None or (isinstance(when, str) and not when.strip()):
            errors["when"] = "required"
        else:
            try:
                scheduled_at = parse_datetime(when)
            except ValueError:
                errors["when"] = "must be an ISO-8601 timestamp"

        if errors:
            raise ValidationException("Invalid booking request", errors=errors)
        return name, email, scheduled_at

    @staticmethod
    def _normalize_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
        """Map request field names to columns and coerce values."""
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValidationException(
                "Unknown booking fields",
                errors={field: "not updatable" for field in sorted(unknown)},
            )

        fields: Dict[str, Any] = {}
        errors: Dict[str, str] = {}
        for key, value in patch.items():
            if value is None:
                continue
            if key == "when":
                try:
                    fields["scheduled_at"] = parse_datetime(value)
                except ValueError:
                    errors["when"] = "must be an ISO-8601 timestamp"
            elif key == "status":
                try:
                    fields["status"] = BookingStatus(value)
                except ValueError:
                    errors["status"] = f"must be one of {[s.value for s in BookingStatus]}"
            elif key in ("name", "email"):
                value = str(value).strip()
                if not value:
                    errors[key] = "must not be empty"
                fields[key] = value
            else:
                fields[key] = value

        if errors:
            raise ValidationException("Invalid booking update", errors=errors)
        return fields


# Factory function
def get_booking_lifecycle(db: Session) -> BookingLifecycle:
    """Get BookingLifecycle wired to the database session and configured providers."""
    return BookingLifecycle(
        store=SQLAlchemyBookingStore(db),
        gateway=get_payment_gateway(),
        dispatcher=get_notification_dispatcher(db),
        meeting_ids=get_meeting_id_generator(),
        payment_secret=settings.razorpay_key_secret,
    )
