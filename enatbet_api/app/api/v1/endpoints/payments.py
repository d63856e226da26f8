"""
API endpoints for Stripe payments.

``create-payment`` returns the PaymentIntent client secret the mobile
app confirms with the Stripe SDK; ``ephemeral-key`` lets the SDK show
the customer's saved cards.  ``webhook`` receives Stripe events and is
authenticated by signature instead of a user token.
"""

import logging
from typing import Any, Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status

from enatbet_api.app.core import stripe_gateway
from enatbet_api.app.core.rate_limit import rate_limiter
from enatbet_api.app.core.security import get_current_user
from enatbet_api.app.schemas.payment import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    EphemeralKeyRequest,
    EphemeralKeyResponse,
    PaymentRead,
)
from enatbet_api.app.services.errors import http_error
from enatbet_api.app.services.payment_service import PaymentService
from enatbet_api.app.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter()


def _stripe_http_error(exc: stripe.StripeError) -> HTTPException:
    code = stripe_gateway.error_status(exc)
    if code >= 500:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=stripe_gateway.error_message(exc))


@router.post(
    "/create-payment",
    response_model=CreatePaymentResponse,
    summary="Create a PaymentIntent for a booking",
    dependencies=[Depends(rate_limiter("payment"))],
)
async def create_payment(
    data: CreatePaymentRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=255),
) -> CreatePaymentResponse:
    """Charge the booking's server-computed total.

    Calling this again for the same booking returns the same
    PaymentIntent.
    """
    try:
        return await PaymentService.create_payment(data.booking_id, current_user, idempotency_key)
    except ValueError as e:
        raise http_error(e)
    except stripe.StripeError as e:
        logger.warning("Stripe rejected payment for booking %s: %s", data.booking_id, e)
        raise _stripe_http_error(e)
    except RuntimeError as e:
        logger.error("Payments unavailable: %s", e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payments are unavailable")


@router.post(
    "/ephemeral-key",
    response_model=EphemeralKeyResponse,
    summary="Create a Stripe ephemeral key",
    dependencies=[Depends(rate_limiter("payment"))],
)
async def create_ephemeral_key(
    data: EphemeralKeyRequest,
    response: Response,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> EphemeralKeyResponse:
    response.headers["Cache-Control"] = "no-store"
    try:
        return await PaymentService.create_ephemeral_key(current_user, data.api_version)
    except ValueError as e:
        raise http_error(e)
    except stripe.StripeError as e:
        raise _stripe_http_error(e)
    except RuntimeError as e:
        logger.error("Payments unavailable: %s", e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payments are unavailable")


@router.post("/webhook", summary="Stripe webhook receiver", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> Dict[str, Any]:
    """Verify and apply a Stripe event.

    Errors while applying an event answer 500 so that Stripe redelivers
    it; events already applied are acknowledged without side effects.
    """
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing signature")
    payload = await request.body()
    try:
        event = stripe_gateway.construct_event(payload, stripe_signature)
    except stripe.SignatureVerificationError:
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")
    except RuntimeError as e:
        logger.error("Webhook received but not configured: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook not configured")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    try:
        return await WebhookService.process_event(event)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        logger.exception("Webhook handler failed for event %s (%s)", event.get("id"), event.get("type"))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook handler failed")


@router.get("/payments", response_model=List[PaymentRead], summary="List my payments")
async def list_my_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[PaymentRead]:
    return await PaymentService.list_payments(
        user_id=current_user["user_id"], status=status_filter, limit=limit, offset=offset
    )
