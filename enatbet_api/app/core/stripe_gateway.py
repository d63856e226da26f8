"""
Thin wrapper around the Stripe SDK.

Every call the application makes to Stripe goes through this module so
the rest of the code deals in plain dicts and so tests can replace the
network calls with fakes.  SDK errors (``stripe.StripeError``) are
allowed to propagate; ``error_status`` maps them to an HTTP status for
the API layer.
"""

import json
import logging
from typing import Any, Dict, Optional

import stripe

from .config import settings

logger = logging.getLogger(__name__)


def _configure() -> None:
    if not settings.stripe_secret_key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")
    stripe.api_key = settings.stripe_secret_key
    if settings.stripe_api_version:
        stripe.api_version = settings.stripe_api_version


def error_status(exc: stripe.StripeError) -> int:
    """HTTP status to report for a Stripe error; 502 when Stripe gave none."""
    return getattr(exc, "http_status", None) or 502


def error_message(exc: stripe.StripeError) -> str:
    return getattr(exc, "user_message", None) or str(exc) or "Payment provider error"


def get_or_create_customer(
    email: str, user_id: int, existing_customer_id: Optional[str] = None
) -> str:
    """Return the Stripe customer id for ``email``, creating the customer if needed."""
    if existing_customer_id:
        return existing_customer_id
    _configure()
    existing = stripe.Customer.list(email=email, limit=1)
    if existing.data:
        return existing.data[0].id
    customer = stripe.Customer.create(
        email=email,
        metadata={"user_id": str(user_id), "source": "enatbet"},
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer.id


def create_payment_intent(
    amount: int,
    currency: str,
    customer_id: str,
    metadata: Dict[str, str],
    idempotency_key: str,
    application_fee_amount: Optional[int] = None,
    destination: Optional[str] = None,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a PaymentIntent; repeated calls with the same key return the same intent."""
    _configure()
    params: Dict[str, Any] = {
        "amount": amount,
        "currency": currency.lower(),
        "customer": customer_id,
        "metadata": metadata,
        "automatic_payment_methods": {"enabled": True},
    }
    if description:
        params["description"] = description
    if destination:
        params["transfer_data"] = {"destination": destination}
        if application_fee_amount:
            params["application_fee_amount"] = application_fee_amount
    intent = stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params)
    return {
        "id": intent.id,
        "client_secret": intent.client_secret,
        "status": intent.status,
        "amount": intent.amount,
        "currency": intent.currency,
    }


def retrieve_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    _configure()
    intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    return {
        "id": intent.id,
        "client_secret": intent.client_secret,
        "status": intent.status,
        "amount": intent.amount,
        "currency": intent.currency,
    }


def update_payment_intent_amount(payment_intent_id: str, amount: int) -> Dict[str, Any]:
    _configure()
    intent = stripe.PaymentIntent.modify(payment_intent_id, amount=amount)
    return {
        "id": intent.id,
        "client_secret": intent.client_secret,
        "status": intent.status,
        "amount": intent.amount,
        "currency": intent.currency,
    }


def create_ephemeral_key(customer_id: str, api_version: str) -> Dict[str, Any]:
    _configure()
    key = stripe.EphemeralKey.create(customer=customer_id, stripe_version=api_version)
    return {"id": key.id, "secret": key.secret}


def create_refund(
    payment_intent_id: str,
    amount: int,
    idempotency_key: str,
    metadata: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    _configure()
    refund = stripe.Refund.create(
        payment_intent=payment_intent_id,
        amount=amount,
        metadata=metadata or {},
        idempotency_key=idempotency_key,
    )
    logger.info("Created refund %s of %s for %s", refund.id, amount, payment_intent_id)
    return {"id": refund.id, "status": refund.status, "amount": refund.amount}


def construct_event(payload: bytes, sig_header: str) -> Dict[str, Any]:
    """Verify a webhook signature and return the event as a dict.

    Raises ``stripe.SignatureVerificationError`` for a bad signature and
    ``ValueError`` for a body that is not JSON.
    """
    secret = settings.stripe_webhook_secret
    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")
    body = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(
        body, sig_header, secret, settings.stripe_webhook_tolerance
    )
    return json.loads(body)
