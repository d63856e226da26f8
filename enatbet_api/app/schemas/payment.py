"""
Pydantic schemas for Stripe payment endpoints.

Request models only carry identifiers: the amount of a booking is
always recomputed on the server from the prices captured on the
booking.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .booking import PriceBreakdownRead


class CreatePaymentRequest(BaseModel):
    booking_id: int = Field(..., gt=0, description="Booking awaiting payment")


class CreatePaymentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    customer_id: str
    amount: int = Field(..., description="Charge amount in minor units")
    currency: str
    breakdown: PriceBreakdownRead


class EphemeralKeyRequest(BaseModel):
    api_version: str = Field(
        ...,
        pattern=r"^\d{4}-\d{2}-\d{2}(\.[a-z]+)?$",
        description="Stripe API version pinned by the mobile SDK, e.g. 2024-06-20",
    )


class EphemeralKey(BaseModel):
    id: str
    secret: str


class EphemeralKeyResponse(BaseModel):
    customer_id: str
    ephemeral_key: EphemeralKey


class PaymentRead(BaseModel):
    id: int
    booking_id: int
    user_id: int
    payment_intent_id: str
    amount: int
    currency: str
    application_fee: int
    status: str
    type: str
    refunded_amount: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"from_attributes": True}
