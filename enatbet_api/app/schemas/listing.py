"""
Pydantic schemas for listings and host calendar blocks.

A listing is a rentable property.  Hosts submit listings which start
out ``pending_approval`` until an administrator approves them (or
immediately ``active`` when auto-approval is switched on).
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.dates import parse_date
from ..utils.money import CURRENCY_DECIMALS, STRIPE_MIN_CHARGE

CancelPolicy = Literal["flexible", "moderate", "strict", "super_strict"]
PropertyType = Literal["apartment", "house", "villa", "cabin", "guesthouse", "hotel", "other"]
RoomType = Literal["entire_place", "private_room", "shared_room"]


class ListingBase(BaseModel):
    title: str = Field(..., min_length=5, max_length=120)
    description: str = Field(..., min_length=20, max_length=5000)
    property_type: PropertyType = "apartment"
    room_type: RoomType = "entire_place"
    address: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    country: str = Field(..., min_length=2, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    price_per_night: float = Field(..., gt=0, le=100000)
    currency: str = "USD"
    cleaning_fee: float = Field(0, ge=0)
    max_guests: int = Field(1, ge=1, le=50)
    bedrooms: int = Field(1, ge=0, le=50)
    beds: int = Field(1, ge=0, le=100)
    bathrooms: float = Field(1, ge=0, le=50)
    min_nights: int = Field(1, ge=1, le=365)
    max_nights: int = Field(365, ge=1, le=365)
    advance_notice_days: int = Field(0, ge=0, le=365)
    check_in_time: str = Field("15:00", pattern=r"^\d{2}:\d{2}$")
    cancel_policy: CancelPolicy = "moderate"
    instant_book: bool = False
    amenities: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def known_currency(cls, v: str) -> str:
        v = v.upper()
        if v not in CURRENCY_DECIMALS:
            raise ValueError(f"Unsupported currency {v}")
        if v not in STRIPE_MIN_CHARGE:
            raise ValueError(f"Listings priced in {v} cannot be paid by card")
        return v

    @field_validator("title", "city", "country")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class ListingCreate(ListingBase):
    """Payload for creating a listing."""


class ListingUpdate(BaseModel):
    """Partial update of a listing; omitted fields are left unchanged."""

    title: Optional[str] = Field(None, min_length=5, max_length=120)
    description: Optional[str] = Field(None, min_length=20, max_length=5000)
    property_type: Optional[PropertyType] = None
    room_type: Optional[RoomType] = None
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    country: Optional[str] = Field(None, min_length=2, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    price_per_night: Optional[float] = Field(None, gt=0, le=100000)
    cleaning_fee: Optional[float] = Field(None, ge=0)
    max_guests: Optional[int] = Field(None, ge=1, le=50)
    bedrooms: Optional[int] = Field(None, ge=0, le=50)
    beds: Optional[int] = Field(None, ge=0, le=100)
    bathrooms: Optional[float] = Field(None, ge=0, le=50)
    min_nights: Optional[int] = Field(None, ge=1, le=365)
    max_nights: Optional[int] = Field(None, ge=1, le=365)
    advance_notice_days: Optional[int] = Field(None, ge=0, le=365)
    check_in_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    cancel_policy: Optional[CancelPolicy] = None
    instant_book: Optional[bool] = None
    amenities: Optional[List[str]] = None
    images: Optional[List[str]] = None
    status: Optional[Literal["active", "inactive"]] = Field(
        None, description="Hosts may pause or resume an approved listing"
    )


class ListingRead(ListingBase):
    id: int
    host_id: int
    status: str
    rating: float = 0
    review_count: int = 0
    bookings_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"from_attributes": True}


class CalendarBlockCreate(BaseModel):
    start_date: str = Field(..., description="First blocked night, YYYY-MM-DD")
    end_date: str = Field(..., description="Day after the last blocked night, YYYY-MM-DD")
    reason: Optional[str] = Field(None, max_length=200)

    @field_validator("start_date", "end_date")
    @classmethod
    def valid_date(cls, v: str) -> str:
        parse_date(v)
        return v


class CalendarBlockRead(BaseModel):
    id: int
    listing_id: int
    booking_id: Optional[int] = None
    start_date: str
    end_date: str
    type: str
    reason: Optional[str] = None


class BookedRange(BaseModel):
    start_date: str
    end_date: str
    type: str


class AvailabilityRead(BaseModel):
    listing_id: int
    start_date: str
    end_date: str
    unavailable: List[BookedRange]
