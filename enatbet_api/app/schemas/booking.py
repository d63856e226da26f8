"""
Pydantic schemas for bookings.

A booking reserves a listing for the half-open date range
``[check_in, check_out)``.  Prices on the booking are computed on the
server when the booking is created; clients never send amounts.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.dates import parse_date


class GuestCounts(BaseModel):
    adults: int = Field(1, ge=1, le=50)
    children: int = Field(0, ge=0, le=50)
    infants: int = Field(0, ge=0, le=10)
    pets: int = Field(0, ge=0, le=10)

    @property
    def total(self) -> int:
        # Infants do not count towards a listing's guest capacity.
        return self.adults + self.children


class BookingCreate(BaseModel):
    listing_id: int = Field(..., gt=0)
    check_in: str = Field(..., description="Arrival date, YYYY-MM-DD")
    check_out: str = Field(..., description="Departure date, YYYY-MM-DD")
    guests: GuestCounts = Field(default_factory=GuestCounts)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("check_in", "check_out")
    @classmethod
    def valid_date(cls, v: str) -> str:
        parse_date(v)
        return v

    @model_validator(mode="after")
    def check_out_after_check_in(self) -> "BookingCreate":
        if parse_date(self.check_out) <= parse_date(self.check_in):
            raise ValueError("Check-out date must be after check-in date")
        return self


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PriceBreakdownRead(BaseModel):
    nights: int
    price_per_night: float
    base_price: float
    cleaning_fee: float
    service_fee: float
    tax: float
    total: float
    currency: str


class BookingRead(BaseModel):
    id: int
    listing_id: int
    guest_id: int
    host_id: int
    check_in: str
    check_out: str
    nights: int
    guests: GuestCounts
    special_requests: Optional[str] = None
    currency: str
    price_per_night: float
    subtotal: float
    cleaning_fee: float
    service_fee: float
    taxes: float
    total: float
    status: str
    confirmation_code: str
    expires_at: Optional[str] = None
    payment_intent_id: Optional[str] = None
    receipt_url: Optional[str] = None
    confirmed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"from_attributes": True}
