"""
API endpoints for the admin back office.

Every route requires the ``admin`` role.  Administrators review host
applications, moderate listings and reviews, suspend users, inspect bookings and payments,
tune platform settings and work through alerts raised by payment
processing.
"""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query

from enatbet_api.app.core.security import require_roles
from enatbet_api.app.schemas.admin import (
    AdminAlertRead,
    AdminVerify,
    Analytics,
    DashboardStats,
    PaymentStats,
    PlatformSettings,
    PlatformSettingsUpdate,
    UserStatusUpdate,
)
from enatbet_api.app.schemas.booking import BookingRead
from enatbet_api.app.schemas.listing import ListingRead
from enatbet_api.app.schemas.payment import PaymentRead
from enatbet_api.app.schemas.review import ReviewRead
from enatbet_api.app.schemas.user import HostApplicationRead, HostApplicationStatus, UserRead
from enatbet_api.app.services.admin_service import AdminService
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.booking_service import BookingService
from enatbet_api.app.services.errors import http_error
from enatbet_api.app.services.host_application_service import HostApplicationService
from enatbet_api.app.services.listing_service import ListingService
from enatbet_api.app.services.payment_service import PaymentService
from enatbet_api.app.services.review_service import ReviewService
from enatbet_api.app.services.settings_service import SettingsService
from enatbet_api.app.services.statistics_service import StatisticsService
from enatbet_api.app.services.user_service import UserService

router = APIRouter()

admin_only = require_roles("admin")


@router.get("/verify", response_model=AdminVerify, summary="Check admin access")
async def verify_admin(current_user: Dict[str, Any] = Depends(admin_only)) -> AdminVerify:
    return AdminVerify(is_admin=True, user_id=current_user["user_id"])


@router.get("/dashboard", response_model=DashboardStats, summary="Dashboard counters")
async def dashboard(current_user: Dict[str, Any] = Depends(admin_only)) -> DashboardStats:
    return await StatisticsService.dashboard()


@router.get("/analytics", response_model=Analytics, summary="Monthly analytics")
async def analytics(
    months: int = Query(6, ge=1, le=24),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> Analytics:
    return await StatisticsService.analytics(months)


# -- users -------------------------------------------------------------------


@router.get("/users", response_model=List[UserRead], summary="List users")
async def list_users(
    filter_: Literal["all", "guest", "host", "admin"] = Query("all", alias="filter"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[UserRead]:
    role = None if filter_ == "all" else filter_
    return await UserService.list_users(role=role, limit=limit, offset=offset)


@router.patch("/users/{user_id}/status", response_model=UserRead, summary="Suspend or reactivate a user")
async def set_user_status(
    user_id: int,
    data: UserStatusUpdate,
    current_user: Dict[str, Any] = Depends(admin_only),
) -> UserRead:
    try:
        return await UserService.set_status(user_id, data.status, current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


# -- host applications -------------------------------------------------------


@router.get("/host-applications", response_model=List[HostApplicationRead], summary="List host applications")
async def list_host_applications(
    status: Optional[HostApplicationStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[HostApplicationRead]:
    """Oldest first, so the review queue is worked in order."""
    return await HostApplicationService.list_applications(status, limit=limit, offset=offset)


@router.post(
    "/host-applications/{application_id}/approve",
    response_model=HostApplicationRead,
    summary="Approve a host application",
)
async def approve_host_application(
    application_id: int,
    current_user: Dict[str, Any] = Depends(admin_only),
) -> HostApplicationRead:
    try:
        return await HostApplicationService.review(application_id, True, current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


@router.post(
    "/host-applications/{application_id}/reject",
    response_model=HostApplicationRead,
    summary="Reject a host application",
)
async def reject_host_application(
    application_id: int,
    reason: Optional[str] = Body(None, embed=True, max_length=500),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> HostApplicationRead:
    try:
        return await HostApplicationService.review(application_id, False, current_user["user_id"], reason)
    except ValueError as e:
        raise http_error(e)


# -- listings ----------------------------------------------------------------


@router.get("/listings", response_model=List[ListingRead], summary="List listings by status")
async def list_listings(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[ListingRead]:
    return await ListingService.list_by_status(status, limit=limit, offset=offset)


@router.post("/listings/{listing_id}/approve", response_model=ListingRead, summary="Approve a listing")
async def approve_listing(
    listing_id: int,
    current_user: Dict[str, Any] = Depends(admin_only),
) -> ListingRead:
    try:
        return await ListingService.moderate(listing_id, True, current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


@router.post("/listings/{listing_id}/reject", response_model=ListingRead, summary="Reject a listing")
async def reject_listing(
    listing_id: int,
    reason: Optional[str] = Body(None, embed=True, max_length=500),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> ListingRead:
    try:
        return await ListingService.moderate(listing_id, False, current_user["user_id"], reason)
    except ValueError as e:
        raise http_error(e)


# -- bookings and payments ---------------------------------------------------


@router.get("/bookings", response_model=List[BookingRead], summary="List all bookings")
async def list_bookings(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[BookingRead]:
    return await BookingService.list_all(status, limit=limit, offset=offset)


@router.get("/payments", response_model=List[PaymentRead], summary="List all payments")
async def list_payments(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[PaymentRead]:
    return await PaymentService.list_payments(status=status, limit=limit, offset=offset)


@router.get("/payments/stats", response_model=PaymentStats, summary="Payment totals")
async def payment_stats(current_user: Dict[str, Any] = Depends(admin_only)) -> PaymentStats:
    return await StatisticsService.payment_stats()


# -- reviews -----------------------------------------------------------------


@router.get("/reviews", response_model=List[ReviewRead], summary="List reviews for moderation")
async def list_reviews(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[ReviewRead]:
    return await ReviewService.list_by_status(status, limit=limit, offset=offset)


@router.post("/reviews/{review_id}/approve", response_model=ReviewRead, summary="Approve a review")
async def approve_review(
    review_id: int,
    current_user: Dict[str, Any] = Depends(admin_only),
) -> ReviewRead:
    try:
        return await ReviewService.moderate(review_id, True, current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


@router.delete("/reviews/{review_id}", response_model=ReviewRead, summary="Remove a review")
async def remove_review(
    review_id: int,
    current_user: Dict[str, Any] = Depends(admin_only),
) -> ReviewRead:
    try:
        return await ReviewService.moderate(review_id, False, current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


# -- settings, alerts, audit -------------------------------------------------


@router.get("/settings", response_model=PlatformSettings, summary="Platform settings")
async def get_settings(current_user: Dict[str, Any] = Depends(admin_only)) -> PlatformSettings:
    return await SettingsService.get_settings()


@router.put("/settings", response_model=PlatformSettings, summary="Update platform settings")
async def update_settings(
    data: PlatformSettingsUpdate,
    current_user: Dict[str, Any] = Depends(admin_only),
) -> PlatformSettings:
    try:
        return await SettingsService.update_settings(data, current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


@router.get("/alerts", response_model=List[AdminAlertRead], summary="List alerts")
async def list_alerts(
    resolved: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[AdminAlertRead]:
    return await AdminService.list_alerts(resolved, limit=limit, offset=offset)


@router.post("/alerts/{alert_id}/resolve", response_model=AdminAlertRead, summary="Resolve an alert")
async def resolve_alert(
    alert_id: int,
    current_user: Dict[str, Any] = Depends(admin_only),
) -> AdminAlertRead:
    try:
        return await AdminService.resolve_alert(alert_id, current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


@router.get("/audit", summary="Audit log")
async def list_audit_logs(
    user_id: Optional[int] = Query(None),
    object_type: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(admin_only),
) -> List[Dict[str, Any]]:
    return await AuditService.list_logs(
        user_id=user_id,
        object_type=object_type,
        action=action,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
