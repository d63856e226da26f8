"""
API endpoints for listings and their calendars.

Searching and viewing listings is public.  Creating a listing turns a
guest into a host; updating, deleting and blocking dates is limited to
the listing's host (or an administrator).
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from enatbet_api.app.core.rate_limit import rate_limiter
from enatbet_api.app.core.security import get_current_user, get_optional_user
from enatbet_api.app.schemas.listing import (
    AvailabilityRead,
    CalendarBlockCreate,
    CalendarBlockRead,
    ListingCreate,
    ListingRead,
    ListingUpdate,
)
from enatbet_api.app.schemas.review import ReviewRead
from enatbet_api.app.services.errors import http_error
from enatbet_api.app.services.listing_service import ListingService
from enatbet_api.app.services.review_service import ReviewService
from enatbet_api.app.utils.dates import add_days, format_date, today_utc

router = APIRouter()


@router.get(
    "",
    response_model=List[ListingRead],
    summary="Search listings",
    dependencies=[Depends(rate_limiter("public"))],
)
async def search_listings(
    city: Optional[str] = Query(None),
    host_id: Optional[int] = Query(None),
    guests: Optional[int] = Query(None, ge=1),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
) -> List[ListingRead]:
    """Search active listings.

    Hosts passing their own ``host_id`` also see their pending and
    inactive listings.
    """
    return await ListingService.search_listings(
        city=city,
        host_id=host_id,
        guests=guests,
        min_price=min_price,
        max_price=max_price,
        limit=limit,
        offset=offset,
        current_user=current_user,
    )


@router.post("", response_model=ListingRead, status_code=status.HTTP_201_CREATED, summary="Create a listing")
async def create_listing(
    data: ListingCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ListingRead:
    try:
        return await ListingService.create_listing(data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.get("/{listing_id}", response_model=ListingRead, summary="Get a listing")
async def get_listing(
    listing_id: int,
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
) -> ListingRead:
    try:
        return await ListingService.get_listing(listing_id, current_user)
    except ValueError as e:
        raise http_error(e)


@router.put("/{listing_id}", response_model=ListingRead, summary="Update a listing")
async def update_listing(
    listing_id: int,
    data: ListingUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ListingRead:
    try:
        return await ListingService.update_listing(listing_id, data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.delete("/{listing_id}", summary="Delete or archive a listing")
async def delete_listing(
    listing_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Listings that were ever booked are archived rather than deleted."""
    try:
        outcome = await ListingService.delete_listing(listing_id, current_user)
    except ValueError as e:
        raise http_error(e)
    return {"id": listing_id, "result": outcome}


@router.get("/{listing_id}/availability", response_model=AvailabilityRead, summary="Listing calendar")
async def get_availability(
    listing_id: int,
    start: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to 90 days after start"),
) -> AvailabilityRead:
    """Return the ranges that cannot be booked between ``start`` and ``end``."""
    try:
        start = start or format_date(today_utc())
        end = end or format_date(add_days(start, 90))
        return await ListingService.get_availability(listing_id, start, end)
    except ValueError as e:
        raise http_error(e)


@router.get("/{listing_id}/reviews", response_model=List[ReviewRead], summary="Listing reviews")
async def list_listing_reviews(
    listing_id: int,
    limit: int = Query(10, ge=1, le=50),
    offset: int = Query(0, ge=0),
) -> List[ReviewRead]:
    return await ReviewService.list_listing_reviews(listing_id, limit=limit, offset=offset)


@router.post(
    "/{listing_id}/blocks",
    response_model=CalendarBlockRead,
    status_code=status.HTTP_201_CREATED,
    summary="Block dates",
)
async def add_block(
    listing_id: int,
    data: CalendarBlockCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> CalendarBlockRead:
    try:
        return await ListingService.add_block(listing_id, data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.delete(
    "/{listing_id}/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Unblock dates"
)
async def remove_block(
    listing_id: int,
    block_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> None:
    try:
        await ListingService.remove_block(listing_id, block_id, current_user)
    except ValueError as e:
        raise http_error(e)
