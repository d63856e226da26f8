import pytest

from conftest import auth, execute, fetch_one
from enatbet_api.app.services.payment_service import can_transition, idempotency_key_for


def create_payment(client, booking_id, token="guest", headers=None):
    return client.post(
        "/api/v1/stripe/create-payment",
        json={"booking_id": booking_id},
        headers={**auth(token), **(headers or {})},
    )


def test_create_payment_charges_server_total(client, book, fake_stripe, user_ids):
    booking = book().json()
    response = create_payment(client, booking["id"])
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["amount"] == 43450
    assert data["currency"] == "USD"
    assert data["client_secret"].startswith(data["payment_intent_id"])
    assert data["customer_id"] == f"cus_test_{user_ids['guest']}"
    assert data["breakdown"]["total"] == 434.5

    intent = fake_stripe.intents[idempotency_key_for(booking["id"])]
    assert intent["metadata"]["booking_id"] == str(booking["id"])
    # No payout account on the host, so no destination charge.
    assert intent["destination"] is None

    stored = fetch_one("SELECT status, payment_intent_id FROM bookings WHERE id = ?", (booking["id"],))
    assert stored == {"status": "payment_processing", "payment_intent_id": data["payment_intent_id"]}
    payment = fetch_one("SELECT * FROM payments WHERE payment_intent_id = ?", (data["payment_intent_id"],))
    assert payment["status"] == "processing"
    assert payment["amount"] == 43450


def test_retrying_create_payment_reuses_intent(client, book, fake_stripe):
    booking = book().json()
    first = create_payment(client, booking["id"]).json()
    second = create_payment(client, booking["id"]).json()
    assert first["payment_intent_id"] == second["payment_intent_id"]
    assert len(fake_stripe.intents) == 1
    assert fetch_one("SELECT COUNT(*) AS n FROM payments")["n"] == 1


def test_client_idempotency_key_is_forwarded(client, book, fake_stripe):
    booking = book().json()
    response = create_payment(client, booking["id"], headers={"Idempotency-Key": "client-key-1"})
    assert response.status_code == 200
    assert list(fake_stripe.intents) == ["client-key-1"]


def test_new_client_key_cannot_mint_a_second_intent(client, book, fake_stripe):
    booking = book().json()
    first = create_payment(client, booking["id"], headers={"Idempotency-Key": "k1"}).json()
    second = create_payment(client, booking["id"], headers={"Idempotency-Key": "k2"})
    assert second.status_code == 200
    assert second.json()["payment_intent_id"] == first["payment_intent_id"]
    assert second.json()["client_secret"] == first["client_secret"]
    assert list(fake_stripe.intents) == ["k1"]
    stored = fetch_one("SELECT payment_intent_id FROM bookings WHERE id = ?", (booking["id"],))
    assert stored["payment_intent_id"] == first["payment_intent_id"]


def test_cancelled_intent_is_replaced(client, book, fake_stripe):
    booking = book().json()
    first = create_payment(client, booking["id"]).json()
    fake_stripe.intent_by_id(first["payment_intent_id"])["status"] = "canceled"
    second = create_payment(client, booking["id"]).json()
    assert second["payment_intent_id"] != first["payment_intent_id"]
    assert len(fake_stripe.intents) == 2
    stored = fetch_one("SELECT payment_intent_id FROM bookings WHERE id = ?", (booking["id"],))
    assert stored["payment_intent_id"] == second["payment_intent_id"]


def test_paid_intent_is_not_offered_again(client, book, fake_stripe):
    booking = book().json()
    first = create_payment(client, booking["id"]).json()
    # Stripe has taken the money but the webhook has not arrived yet.
    fake_stripe.intent_by_id(first["payment_intent_id"])["status"] = "succeeded"
    response = create_payment(client, booking["id"], headers={"Idempotency-Key": "another"})
    assert response.status_code == 409
    assert len(fake_stripe.intents) == 1


def test_destination_charge_when_host_has_payout_account(client, book, fake_stripe):
    response = client.post(
        "/api/v1/users/me/host", json={"stripe_connect_account_id": "acct_host1"}, headers=auth("host")
    )
    assert response.status_code == 200
    booking = book().json()
    create_payment(client, booking["id"])
    intent = fake_stripe.intents[idempotency_key_for(booking["id"])]
    assert intent["destination"] == "acct_host1"
    assert intent["application_fee_amount"] == 4500


def test_only_the_guest_can_pay(client, book):
    booking = book().json()
    assert create_payment(client, booking["id"], token="guest2").status_code == 403
    assert create_payment(client, 999).status_code == 404


def test_expired_hold_cannot_be_paid(client, book):
    booking = book().json()
    execute("UPDATE bookings SET expires_at = '2000-01-01 00:00:00' WHERE id = ?", (booking["id"],))
    response = create_payment(client, booking["id"])
    assert response.status_code == 409
    assert "expired" in response.json()["detail"]


def test_cancelled_booking_cannot_be_paid(client, book):
    booking = book().json()
    client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=auth("guest"))
    assert create_payment(client, booking["id"]).status_code == 409


def test_charge_uses_captured_price(client, listing, book, fake_stripe):
    booking = book().json()
    # Raising the nightly price after booking does not change what the guest pays.
    client.put(f"/api/v1/listings/{listing['id']}", json={"price_per_night": 250}, headers=auth("host"))
    assert create_payment(client, booking["id"]).json()["amount"] == 43450


def test_ephemeral_key(client, user_ids):
    response = client.post(
        "/api/v1/stripe/ephemeral-key", json={"api_version": "2024-06-20"}, headers=auth("guest")
    )
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    assert response.json() == {
        "customer_id": f"cus_test_{user_ids['guest']}",
        "ephemeral_key": {"id": "ephkey_test_1", "secret": f"ek_test_cus_test_{user_ids['guest']}"},
    }
    bad = client.post("/api/v1/stripe/ephemeral-key", json={"api_version": "latest"}, headers=auth("guest"))
    assert bad.status_code == 422


def test_list_my_payments(client, paid_booking):
    mine = client.get("/api/v1/stripe/payments", headers=auth("guest")).json()
    assert [(p["booking_id"], p["status"]) for p in mine] == [(paid_booking["id"], "succeeded")]
    assert client.get("/api/v1/stripe/payments", headers=auth("guest2")).json() == []


@pytest.mark.parametrize(
    "current, new, allowed",
    [
        ("pending", "processing", True),
        ("processing", "succeeded", True),
        ("processing", "failed", True),
        ("failed", "processing", True),
        ("succeeded", "refunded", True),
        ("succeeded", "disputed", True),
        ("succeeded", "processing", False),
        ("succeeded", "failed", False),
        ("refunded", "succeeded", False),
        ("processing", "processing", False),
    ],
)
def test_payment_status_only_moves_forward(current, new, allowed):
    assert can_transition(current, new) is allowed


def test_idempotency_key_is_stable():
    assert idempotency_key_for(42) == idempotency_key_for(42)
    assert idempotency_key_for(42) != idempotency_key_for(43)
    assert idempotency_key_for(42).startswith("payment-")
