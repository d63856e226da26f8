"""
Pydantic schemas for users and favorites.

Users are created automatically from Firebase ID tokens, so there is
no registration payload; clients only update their profile, apply to
host and opt in to hosting once approved.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .listing import PropertyType

HostApplicationStatus = Literal["pending", "approved", "rejected"]


class UserRead(BaseModel):
    """Profile of the authenticated user."""

    id: int
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    photo_url: Optional[str] = None
    language: str = "en"
    role: str
    status: str
    stripe_connect_account_id: Optional[str] = None
    created_at: Optional[str] = None

    model_config = {"from_attributes": True}


class UserUpdate(BaseModel):
    """Fields a user may change on their own profile."""

    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=32, description="E.164 phone number")
    photo_url: Optional[str] = Field(None, max_length=2048)
    language: Optional[str] = Field(None, pattern=r"^[a-z]{2}$", description="ISO 639-1 code")


class BecomeHost(BaseModel):
    stripe_connect_account_id: Optional[str] = Field(
        None, pattern=r"^acct_[A-Za-z0-9]+$", description="Stripe Connect account receiving payouts"
    )


class HostApplicationCreate(BaseModel):
    """A guest's request to start hosting.

    ``email`` defaults to the address on the caller's account.
    """

    full_name: str = Field(..., min_length=2, max_length=100)
    email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(..., min_length=7, max_length=32)
    property_city: str = Field(..., min_length=1, max_length=100)
    property_type: PropertyType = "apartment"
    message: Optional[str] = Field(None, max_length=2000)
    agreed_to_terms: bool

    @field_validator("full_name", "phone", "property_city")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("agreed_to_terms")
    @classmethod
    def terms_accepted(cls, v: bool) -> bool:
        if not v:
            raise ValueError("The host terms must be accepted")
        return v


class HostApplicationRead(BaseModel):
    id: int
    user_id: int
    full_name: str
    email: str
    phone: str
    property_city: str
    property_type: str
    message: Optional[str] = None
    status: HostApplicationStatus
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[str] = None
    created_at: Optional[str] = None


class FavoriteCreate(BaseModel):
    listing_id: int = Field(..., gt=0)
