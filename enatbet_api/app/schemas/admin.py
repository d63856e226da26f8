"""
Pydantic schemas for the admin back office.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class UserStatusUpdate(BaseModel):
    status: Literal["active", "suspended"]


class AdminVerify(BaseModel):
    is_admin: bool
    user_id: int


class DashboardStats(BaseModel):
    total_users: int
    total_hosts: int
    total_listings: int
    active_bookings: int
    pending_approvals: int
    monthly_revenue: float
    user_growth: float = Field(..., description="Percent change in sign-ups vs previous month")
    booking_growth: float = Field(..., description="Percent change in bookings vs previous month")


class MonthlyValue(BaseModel):
    month: str
    value: float


class LabelCount(BaseModel):
    label: str
    count: int


class Analytics(BaseModel):
    user_growth: List[MonthlyValue]
    booking_trends: List[MonthlyValue]
    revenue_data: List[MonthlyValue]
    top_locations: List[LabelCount]
    property_types: List[LabelCount]
    avg_booking_value: float
    repeat_guest_rate: float


class PaymentStats(BaseModel):
    total_revenue: float
    platform_fees: float
    refunded: float
    completed_payouts: float
    pending_payouts: float


class PlatformSettings(BaseModel):
    commission_rate: float = 15.0
    currency: str = "USD"
    default_language: str = "en"
    booking_cancellation_hours: int = 48
    auto_approve_listings: bool = False
    require_host_verification: bool = True
    enable_guest_reviews: bool = True
    enable_host_reviews: bool = True
    min_booking_days: int = 1
    max_booking_days: int = 90


class PlatformSettingsUpdate(BaseModel):
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$")
    default_language: Optional[str] = Field(None, pattern=r"^[a-z]{2}$")
    booking_cancellation_hours: Optional[int] = Field(None, ge=0)
    auto_approve_listings: Optional[bool] = None
    require_host_verification: Optional[bool] = None
    enable_guest_reviews: Optional[bool] = None
    enable_host_reviews: Optional[bool] = None
    min_booking_days: Optional[int] = Field(None, ge=1, le=365)
    max_booking_days: Optional[int] = Field(None, ge=1, le=365)


class AdminAlertRead(BaseModel):
    id: int
    type: str
    booking_id: Optional[int] = None
    dispute_id: Optional[str] = None
    amount: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    resolved: bool
    resolved_by: Optional[int] = None
    resolved_at: Optional[str] = None
    created_at: str


class CleanupResult(BaseModel):
    success: bool
    cleaned_count: int
    expired_holds: int
    stale_payments: int
    completed_stays: int
    removed_blocks: int
    timestamp: str
