import stripe

from conftest import auth
from enatbet_api.app.core import stripe_gateway


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["environment"] == "test"


def test_card_declined_is_reported(client, book, monkeypatch):
    def declined(**kwargs):
        raise stripe.CardError("Your card was declined.", None, "card_declined", http_status=402)

    monkeypatch.setattr(stripe_gateway, "create_payment_intent", declined)
    booking = book().json()
    response = client.post(
        "/api/v1/stripe/create-payment", json={"booking_id": booking["id"]}, headers=auth("guest")
    )
    assert response.status_code == 402
    # The hold is untouched so the guest can try again.
    assert client.get(f"/api/v1/bookings/{booking['id']}", headers=auth("guest")).json()["status"] == (
        "pending_payment"
    )


def test_stripe_outage_is_bad_gateway(client, book, monkeypatch):
    def outage(**kwargs):
        raise stripe.APIConnectionError("Could not connect to Stripe")

    monkeypatch.setattr(stripe_gateway, "create_payment_intent", outage)
    booking = book().json()
    response = client.post(
        "/api/v1/stripe/create-payment", json={"booking_id": booking["id"]}, headers=auth("guest")
    )
    assert response.status_code == 502


def test_payments_not_configured(client, book, monkeypatch):
    def unconfigured(**kwargs):
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")

    monkeypatch.setattr(stripe_gateway, "create_payment_intent", unconfigured)
    booking = book().json()
    response = client.post(
        "/api/v1/stripe/create-payment", json={"booking_id": booking["id"]}, headers=auth("guest")
    )
    assert response.status_code == 503
    assert response.json()["detail"] == "Payments are unavailable"


def test_webhook_without_secret(client, monkeypatch):
    from enatbet_api.app.core.config import settings

    monkeypatch.setattr(settings, "stripe_webhook_secret", "")
    response = client.post("/api/v1/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})
    assert response.status_code == 500
