"""
Booking API routes.

Thin HTTP layer over ``BookingLifecycle``. Mutating endpoints schedule one
notification worker pass to run after the response is sent.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from counselbook.api.dependencies import (
    get_current_principal,
    get_lifecycle,
    get_optional_principal,
    require_admin,
)
from counselbook.jobs.notification_worker import drain_notifications
from counselbook.lib.errors import ForbiddenException, ValidationException
from counselbook.lib.jwt import Principal
from counselbook.lib.meeting_links import build_meeting_url
from counselbook.lib.settings import settings
from counselbook.lib.timeutils import as_utc, parse_datetime
from counselbook.models.bookings import Booking, BookingStatus
from counselbook.services.booking_lifecycle import BookingLifecycle
from counselbook.services.booking_store import BookingFilters
from counselbook.services.payment_gateway import PaymentOrder


# Pydantic schemas
class CamelModel(BaseModel):
    """Base schema exchanging camelCase JSON with the web client."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingResponse(CamelModel):
    """Booking as returned to clients."""
    id: UUID
    name: str
    email: str
    when: datetime
    reason: str
    status: BookingStatus
    user_id: Optional[str] = None
    meeting_id: Optional[str] = None
    meeting_url: Optional[str] = None
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            name=booking.name,
            email=booking.email,
            when=as_utc(booking.scheduled_at),
            reason=booking.reason,
            status=booking.status,
            user_id=booking.user_id,
            meeting_id=booking.meeting_id,
            meeting_url=build_meeting_url(booking.meeting_id) if booking.meeting_id else None,
            order_id=booking.order_id,
            payment_id=booking.payment_id,
            amount=booking.amount,
            currency=booking.currency,
            created_at=as_utc(booking.created_at),
            updated_at=as_utc(booking.updated_at),
        )


class CreateBookingRequest(CamelModel):
    name: str
    email: str
    when: str = Field(..., description="Session start, ISO-8601")
    reason: Optional[str] = None


class InitiateBookingRequest(CreateBookingRequest):
    amount: Optional[int] = Field(None, gt=0, description="Smallest currency unit; defaults to the session price")


class VerifyPaymentRequest(CamelModel):
    booking_id: UUID
    payment_id: str
    order_id: str
    signature: str


class UpdateBookingRequest(CamelModel):
    """Admin patch; omitted fields are left unchanged."""
    name: Optional[str] = None
    email: Optional[str] = None
    when: Optional[str] = None
    reason: Optional[str] = None
    status: Optional[BookingStatus] = None


class PaymentOrderResponse(CamelModel):
    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: str


class InitiateBookingResponse(CamelModel):
    booking: BookingResponse
    order: PaymentOrderResponse
    key_id: Optional[str] = Field(None, description="Public gateway key for the checkout widget")


class CancelBookingResponse(CamelModel):
    message: str


# Router
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    body: CreateBookingRequest,
    principal: Optional[Principal] = Depends(get_optional_principal),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    """
    Book a session without payment.

    Returns the requester's existing pending or confirmed booking instead of
    creating a second one. Signed-in callers are linked to the booking.
    """
    booking = lifecycle.create(
        name=body.name,
        email=body.email,
        when=body.when,
        reason=body.reason,
        user_id=principal.user_id if principal else None,
    )
    return BookingResponse.from_booking(booking)


@router.post("/initiate", response_model=InitiateBookingResponse, status_code=status.HTTP_201_CREATED)
def initiate_booking(
    body: InitiateBookingRequest,
    principal: Optional[Principal] = Depends(get_optional_principal),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> InitiateBookingResponse:
    """
    Start a paid booking.

    Creates a gateway order and a booking awaiting payment. The client
    completes checkout with the returned order, then calls ``/bookings/verify``.
    """
    booking, order = lifecycle.initiate(
        name=body.name,
        email=body.email,
        when=body.when,
        reason=body.reason,
        amount=body.amount,
        user_id=principal.user_id if principal else None,
    )
    return InitiateBookingResponse(
        booking=BookingResponse.from_booking(booking),
        order=_order_response(order),
        key_id=settings.razorpay_key_id,
    )


@router.post("/verify", response_model=BookingResponse)
def verify_payment(
    body: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    """
    Verify the gateway payment callback and confirm the booking.

    Public: the signature is the credential.
    """
    booking = lifecycle.verify_payment(
        booking_id=body.booking_id,
        payment_id=body.payment_id,
        order_id=body.order_id,
        signature=body.signature,
    )
    background_tasks.add_task(drain_notifications)
    return BookingResponse.from_booking(booking)


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status", description="Comma-separated statuses"),
    from_date: Optional[str] = Query(None, alias="fromDate"),
    to_date: Optional[str] = Query(None, alias="toDate"),
    sort: str = Query("asc", pattern="^(asc|desc)$"),
    user_id: Optional[str] = Query(None, alias="userId"),
    email: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> List[BookingResponse]:
    """
    List bookings sorted by session time.

    Query parameters:
    - status: e.g. ``pending,confirmed``
    - fromDate / toDate: inclusive bounds on the session time
    - sort: ``asc`` (default) or ``desc``
    - userId / email: admin only; other callers always see their own bookings
    """
    filters = BookingFilters(
        statuses=_parse_statuses(status_filter),
        from_date=_parse_query_datetime("fromDate", from_date),
        to_date=_parse_query_datetime("toDate", to_date),
        sort=sort,
    )
    if principal.is_admin:
        filters.user_id = user_id
        filters.email = email
    else:
        filters.user_id = principal.user_id

    return [BookingResponse.from_booking(b) for b in lifecycle.list(filters)]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: UUID,
    principal: Principal = Depends(get_current_principal),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    """Get one booking. Visible to its owner (by user id or email) and to admins."""
    booking = lifecycle.get_by_id(booking_id)

    is_owner = (
        (booking.user_id is not None and booking.user_id == principal.user_id)
        or (principal.email is not None and booking.email.lower() == principal.email.strip().lower())
    )
    if not (is_owner or principal.is_admin):
        raise ForbiddenException("Not allowed to view this booking")

    return BookingResponse.from_booking(booking)


@router.put("/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: UUID,
    body: UpdateBookingRequest,
    background_tasks: BackgroundTasks,
    admin: Principal = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> BookingResponse:
    """
    Update a booking (admin).

    Setting status to ``confirmed`` mints the meeting link and emails the
    requester; changing ``when`` emails a reschedule notice.
    """
    booking = lifecycle.update(booking_id, body.model_dump(exclude_unset=True))
    background_tasks.add_task(drain_notifications)
    return BookingResponse.from_booking(booking)


@router.delete("/{booking_id}", response_model=CancelBookingResponse)
def cancel_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    admin: Principal = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> CancelBookingResponse:
    """Cancel a booking (admin). The record is kept with status ``cancelled``."""
    result = lifecycle.cancel(booking_id)
    background_tasks.add_task(drain_notifications)
    return CancelBookingResponse(**result)


def _order_response(order: PaymentOrder) -> PaymentOrderResponse:
    return PaymentOrderResponse(**order.to_dict())


def _parse_statuses(raw: Optional[str]) -> Optional[List[BookingStatus]]:
    if not raw:
        return None
    try:
        return [BookingStatus(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationException(
            "Invalid status filter",
            errors={"status": f"must be any of {[s.value for s in BookingStatus]}"},
        )


def _parse_query_datetime(name: str, raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return parse_datetime(raw)
    except ValueError:
        raise ValidationException("Invalid date filter", errors={name: "must be an ISO-8601 timestamp"})
