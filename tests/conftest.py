import hashlib
import hmac
import itertools
import json
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from enatbet_api.app.core import rate_limit, security, stripe_gateway
from enatbet_api.app.core.config import get_business_config, settings
from enatbet_api.app.core.db import get_connection, init_db
from enatbet_api.app.main import app
from enatbet_api.app.utils.dates import format_date, today_utc

WEBHOOK_SECRET = "whsec_test_secret"
CRON_SECRET = "cron-test-secret"

# bearer token -> Firebase claims
TOKENS = {
    "guest": {"sub": "uid-guest", "email": "guest@example.com", "name": "Guest One"},
    "guest2": {"sub": "uid-guest2", "email": "guest2@example.com", "name": "Guest Two"},
    "host": {"sub": "uid-host", "email": "host@example.com", "name": "Host One"},
    "outsider": {"sub": "uid-outsider", "email": "outsider@example.com"},
    "admin": {"sub": "uid-admin", "email": "admin@example.com", "admin": True},
}

LISTING = {
    "title": "Sunny flat near Bole",
    "description": "Two bedroom apartment with a balcony and fast wifi.",
    "city": "Addis Ababa",
    "country": "Ethiopia",
    "price_per_night": 100.0,
    "cleaning_fee": 50.0,
    "max_guests": 4,
    "cancel_policy": "moderate",
}


def auth(name):
    return {"Authorization": f"Bearer {name}"}


def future(days):
    return format_date(today_utc() + timedelta(days=days))


def sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def execute(sql, params=()):
    conn = get_connection()
    try:
        conn.execute(sql, params)
        conn.commit()
    finally:
        conn.close()


def fetch_one(sql, params=()):
    conn = get_connection()
    try:
        row = conn.execute(sql, params).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


@pytest.fixture(autouse=True)
def test_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "database_url", str(tmp_path / "enatbet-test.db"))
    monkeypatch.setattr(settings, "environment", "test")
    monkeypatch.setattr(settings, "firebase_project_id", "enatbet-test")
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_dummy")
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    monkeypatch.setattr(settings, "redis_url", "")
    monkeypatch.setattr(settings, "rate_limit_enabled", False)
    monkeypatch.setattr(settings, "platform_fee_percentage", None)
    monkeypatch.setattr(settings, "tax_rate", None)
    monkeypatch.setattr(settings, "min_booking_amount_major", None)
    get_business_config.cache_clear()
    rate_limit.reset()
    init_db()
    yield
    get_business_config.cache_clear()
    rate_limit.reset()


class FakeStripe:
    """Records gateway calls; PaymentIntents are keyed by idempotency key like Stripe does."""

    def __init__(self):
        self.intents = {}
        self.refunds = []
        self.refund_error = None
        self._ids = itertools.count(1)

    def get_or_create_customer(self, email, user_id, existing_customer_id=None):
        return existing_customer_id or f"cus_test_{user_id}"

    def create_payment_intent(self, amount, currency, customer_id, metadata, idempotency_key, **kwargs):
        if idempotency_key not in self.intents:
            n = next(self._ids)
            self.intents[idempotency_key] = {
                "id": f"pi_test_{n}",
                "client_secret": f"pi_test_{n}_secret_abc",
                "status": "requires_payment_method",
                "amount": amount,
                "currency": currency.lower(),
                "customer": customer_id,
                "metadata": metadata,
                **kwargs,
            }
        return self.intents[idempotency_key]

    def intent_by_id(self, payment_intent_id):
        return next(i for i in self.intents.values() if i["id"] == payment_intent_id)

    def retrieve_payment_intent(self, payment_intent_id):
        return self.intent_by_id(payment_intent_id)

    def update_payment_intent_amount(self, payment_intent_id, amount):
        intent = self.intent_by_id(payment_intent_id)
        intent["amount"] = amount
        return intent

    def create_ephemeral_key(self, customer_id, api_version):
        return {"id": "ephkey_test_1", "secret": f"ek_test_{customer_id}"}

    def create_refund(self, payment_intent_id, amount, idempotency_key, metadata=None):
        if self.refund_error:
            raise self.refund_error
        refund = {"id": f"re_test_{len(self.refunds) + 1}", "payment_intent": payment_intent_id,
                  "amount": amount, "idempotency_key": idempotency_key}
        self.refunds.append(refund)
        return refund


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    for name in (
        "get_or_create_customer",
        "create_payment_intent",
        "retrieve_payment_intent",
        "update_payment_intent_amount",
        "create_ephemeral_key",
        "create_refund",
    ):
        monkeypatch.setattr(stripe_gateway, name, getattr(fake, name))
    return fake


@pytest.fixture
def client(monkeypatch, fake_stripe):
    async def fake_verify(token):
        if token not in TOKENS:
            raise security.InvalidTokenError("Unknown test token")
        return dict(TOKENS[token])

    monkeypatch.setattr(security, "verify_firebase_token", fake_verify)
    with TestClient(app) as test_client:
        yield test_client


def approve_host_application(user_id):
    """Record an approved host application so the user may start hosting."""
    execute(
        """
        INSERT INTO host_applications (user_id, full_name, email, phone, property_city, property_type, status)
        VALUES (?, 'Host One', 'host@example.com', '+251911000000', 'Addis Ababa', 'apartment', 'approved')
        """,
        (user_id,),
    )


@pytest.fixture
def user_ids(client):
    """Provision every test user and return their database ids.

    ``host`` already holds an approved host application.
    """
    ids = {}
    for name in TOKENS:
        response = client.get("/api/v1/users/me", headers=auth(name))
        assert response.status_code == 200, response.text
        ids[name] = response.json()["id"]
    approve_host_application(ids["host"])
    return ids


@pytest.fixture
def listing(client, user_ids):
    """An approved listing owned by ``host``."""
    response = client.post("/api/v1/listings", json=LISTING, headers=auth("host"))
    assert response.status_code == 201, response.text
    listing_id = response.json()["id"]
    response = client.post(f"/api/v1/admin/listings/{listing_id}/approve", headers=auth("admin"))
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def book(client, listing):
    def _book(check_in_days=30, nights=3, token="guest", listing_id=None):
        payload = {
            "listing_id": listing_id or listing["id"],
            "check_in": future(check_in_days),
            "check_out": future(check_in_days + nights),
            "guests": {"adults": 2},
        }
        return client.post("/api/v1/bookings", json=payload, headers=auth(token))

    return _book


@pytest.fixture
def send_event(client):
    def _send(event_type, obj, event_id=None):
        event = {
            "id": event_id or f"evt_{event_type.replace('.', '_')}_{obj.get('id')}",
            "object": "event",
            "type": event_type,
            "livemode": False,
            "data": {"object": obj},
        }
        payload = json.dumps(event)
        return client.post(
            "/api/v1/stripe/webhook",
            content=payload,
            headers={"Stripe-Signature": sign(payload), "Content-Type": "application/json"},
        )

    return _send


@pytest.fixture
def paid_booking(client, book, send_event):
    """A booking taken through create-payment and confirmed by the webhook."""
    booking = book().json()
    payment = client.post(
        "/api/v1/stripe/create-payment", json={"booking_id": booking["id"]}, headers=auth("guest")
    ).json()
    response = send_event(
        "payment_intent.succeeded",
        {
            "id": payment["payment_intent_id"],
            "object": "payment_intent",
            "amount": payment["amount"],
            "currency": "usd",
            "status": "succeeded",
            "latest_charge": "ch_test_1",
            "metadata": {"booking_id": str(booking["id"])},
        },
    )
    assert response.status_code == 200, response.text
    return client.get(f"/api/v1/bookings/{booking['id']}", headers=auth("guest")).json()
