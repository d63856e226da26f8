"""
API endpoints for bookings.

A booking is created in ``pending_payment`` with a short hold on the
dates; the guest then pays through ``/stripe/create-payment`` and the
Stripe webhook confirms it.
"""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from enatbet_api.app.core.rate_limit import rate_limiter
from enatbet_api.app.core.security import get_current_user
from enatbet_api.app.schemas.booking import BookingCancel, BookingCreate, BookingRead
from enatbet_api.app.services.booking_service import BookingService
from enatbet_api.app.services.errors import http_error

router = APIRouter()


@router.post(
    "",
    response_model=BookingRead,
    status_code=status.HTTP_201_CREATED,
    summary="Book a listing",
    dependencies=[Depends(rate_limiter("api"))],
)
async def create_booking(
    data: BookingCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> BookingRead:
    """Reserve the dates and return the booking with its server-side price.

    Responds 409 when the dates overlap another booking or a blocked
    range.
    """
    try:
        return await BookingService.create_booking(data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.get("", response_model=List[BookingRead], summary="List my bookings")
async def list_bookings(
    as_: Literal["guest", "host"] = Query("guest", alias="as"),
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[BookingRead]:
    """Bookings made by the caller, or with ``as=host`` bookings of the caller's listings."""
    return await BookingService.list_bookings(
        current_user, as_host=as_ == "host", status=status_filter, limit=limit, offset=offset
    )


@router.get("/{booking_id}", response_model=BookingRead, summary="Get a booking")
async def get_booking(
    booking_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> BookingRead:
    try:
        return await BookingService.get_booking(booking_id, current_user)
    except ValueError as e:
        raise http_error(e)


@router.post("/{booking_id}/cancel", response_model=BookingRead, summary="Cancel a booking")
async def cancel_booking(
    booking_id: int,
    data: Optional[BookingCancel] = Body(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> BookingRead:
    """Cancel a booking; paid bookings are refunded according to the cancellation policy."""
    try:
        return await BookingService.cancel_booking(booking_id, current_user, data.reason if data else None)
    except ValueError as e:
        raise http_error(e)


@router.post("/{booking_id}/check-in", response_model=BookingRead, summary="Mark guest arrival")
async def check_in(
    booking_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> BookingRead:
    try:
        return await BookingService.record_stay_event(booking_id, current_user, "check_in")
    except ValueError as e:
        raise http_error(e)


@router.post("/{booking_id}/check-out", response_model=BookingRead, summary="Mark guest departure")
async def check_out(
    booking_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> BookingRead:
    try:
        return await BookingService.record_stay_event(booking_id, current_user, "check_out")
    except ValueError as e:
        raise http_error(e)
