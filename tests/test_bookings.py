import threading

from fastapi.testclient import TestClient

from conftest import auth, execute, fetch_one, future
from enatbet_api.app.main import app


def test_create_booking_prices_on_server(book, user_ids):
    response = book(check_in_days=30, nights=3)
    assert response.status_code == 201, response.text
    booking = response.json()
    assert booking["status"] == "pending_payment"
    assert booking["guest_id"] == user_ids["guest"]
    assert booking["host_id"] == user_ids["host"]
    assert booking["nights"] == 3
    assert booking["subtotal"] == 300.0
    assert booking["cleaning_fee"] == 50.0
    assert booking["service_fee"] == 45.0
    assert booking["taxes"] == 39.5
    assert booking["total"] == 434.5
    assert booking["expires_at"]
    assert len(booking["confirmation_code"]) == 8


def test_overlapping_booking_is_rejected(book):
    assert book(check_in_days=30, nights=3).status_code == 201
    response = book(check_in_days=31, nights=3, token="guest2")
    assert response.status_code == 409
    assert "Dates unavailable" in response.json()["detail"]


def test_back_to_back_bookings_are_allowed(book):
    assert book(check_in_days=30, nights=3).status_code == 201
    # Next guest arrives on the day the first one leaves.
    assert book(check_in_days=33, nights=2, token="guest2").status_code == 201
    assert book(check_in_days=28, nights=2, token="guest2").status_code == 201


def test_expired_hold_releases_dates(book):
    first = book(check_in_days=30, nights=3).json()
    execute("UPDATE bookings SET expires_at = '2000-01-01 00:00:00' WHERE id = ?", (first["id"],))
    assert book(check_in_days=30, nights=3, token="guest2").status_code == 201


def test_host_block_prevents_booking(client, listing, book):
    response = client.post(
        f"/api/v1/listings/{listing['id']}/blocks",
        json={"start_date": future(40), "end_date": future(45), "reason": "Renovation"},
        headers=auth("host"),
    )
    assert response.status_code == 201, response.text
    assert book(check_in_days=44, nights=3).status_code == 409


def test_booking_validation(client, listing, book):
    assert book(check_in_days=-2, nights=3).status_code == 400
    too_many = {
        "listing_id": listing["id"],
        "check_in": future(10),
        "check_out": future(12),
        "guests": {"adults": 5},
    }
    response = client.post("/api/v1/bookings", json=too_many, headers=auth("guest"))
    assert response.status_code == 400
    assert "at most 4 guests" in response.json()["detail"]
    reversed_dates = dict(too_many, check_in=future(12), check_out=future(10), guests={"adults": 1})
    assert client.post("/api/v1/bookings", json=reversed_dates, headers=auth("guest")).status_code == 422


def test_platform_maximum_stay(book):
    response = book(check_in_days=10, nights=91)
    assert response.status_code == 400
    assert response.json()["detail"] == "Maximum stay is 90 nights"


def test_host_cannot_book_own_listing(book):
    assert book(token="host").status_code == 400


def test_unknown_or_pending_listing(client, user_ids, book):
    assert book(listing_id=9999).status_code == 404
    draft = client.post(
        "/api/v1/listings",
        json={
            "title": "Quiet cabin in the hills",
            "description": "A small cabin far away from the noise of the city.",
            "city": "Debre Zeit",
            "country": "Ethiopia",
            "price_per_night": 60,
        },
        headers=auth("host"),
    ).json()
    assert draft["status"] == "pending_approval"
    assert book(listing_id=draft["id"]).status_code == 404


def test_booking_requires_authentication(client, listing):
    payload = {"listing_id": listing["id"], "check_in": future(5), "check_out": future(7)}
    assert client.post("/api/v1/bookings", json=payload).status_code == 401
    assert client.post("/api/v1/bookings", json=payload, headers=auth("bogus")).status_code == 401


def test_booking_visibility(client, book):
    booking = book().json()
    url = f"/api/v1/bookings/{booking['id']}"
    assert client.get(url, headers=auth("guest")).status_code == 200
    assert client.get(url, headers=auth("host")).status_code == 200
    assert client.get(url, headers=auth("admin")).status_code == 200
    assert client.get(url, headers=auth("outsider")).status_code == 403

    mine = client.get("/api/v1/bookings", headers=auth("guest")).json()
    assert [b["id"] for b in mine] == [booking["id"]]
    hosting = client.get("/api/v1/bookings", params={"as": "host"}, headers=auth("host")).json()
    assert [b["id"] for b in hosting] == [booking["id"]]
    assert client.get("/api/v1/bookings", headers=auth("host")).json() == []


def test_cancel_unpaid_booking(client, book):
    booking = book().json()
    response = client.post(
        f"/api/v1/bookings/{booking['id']}/cancel", json={"reason": "Change of plans"}, headers=auth("guest")
    )
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["cancelled_by"] == "guest"
    assert data["refund_amount"] == 0
    again = client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=auth("guest"))
    assert again.status_code == 409


def test_cancel_paid_booking_refunds_per_policy(client, paid_booking, fake_stripe):
    assert paid_booking["status"] == "confirmed"
    response = client.post(f"/api/v1/bookings/{paid_booking['id']}/cancel", headers=auth("guest"))
    assert response.status_code == 200, response.text
    assert response.json()["refund_amount"] == 434.5
    assert fake_stripe.refunds == [
        {
            "id": "re_test_1",
            "payment_intent": paid_booking["payment_intent_id"],
            "amount": 43450,
            "idempotency_key": f"refund-booking-{paid_booking['id']}",
        }
    ]
    assert fetch_one("SELECT COUNT(*) AS n FROM calendar_blocks WHERE booking_id = ?", (paid_booking["id"],))["n"] == 0


def test_failed_refund_raises_alert(client, paid_booking, fake_stripe):
    fake_stripe.refund_error = RuntimeError("card network unavailable")
    response = client.post(f"/api/v1/bookings/{paid_booking['id']}/cancel", headers=auth("host"))
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    alerts = client.get("/api/v1/admin/alerts", headers=auth("admin")).json()
    assert [(a["type"], a["booking_id"], a["amount"]) for a in alerts] == [
        ("refund_failed", paid_booking["id"], 43450)
    ]


def test_check_in_and_check_out(client, paid_booking):
    url = f"/api/v1/bookings/{paid_booking['id']}"
    assert client.post(f"{url}/check-in", headers=auth("guest")).status_code == 403
    # Arrival is 30 days away.
    assert client.post(f"{url}/check-in", headers=auth("host")).status_code == 400
    execute(
        "UPDATE bookings SET check_in = ?, check_out = ? WHERE id = ?",
        (future(0), future(3), paid_booking["id"]),
    )
    assert client.post(f"{url}/check-out", headers=auth("host")).status_code == 409
    response = client.post(f"{url}/check-in", headers=auth("host"))
    assert response.json()["status"] == "checked_in"
    response = client.post(f"{url}/check-out", headers=auth("host"))
    assert response.json()["status"] == "checked_out"


def test_concurrent_bookings_for_the_same_nights(client, listing):
    # Each thread gets its own client and event loop so the two requests really overlap.
    payload = {
        "listing_id": listing["id"],
        "check_in": future(40),
        "check_out": future(43),
        "guests": {"adults": 1},
    }
    start = threading.Barrier(2)
    results = []

    def reserve(token):
        racer = TestClient(app)
        start.wait()
        results.append(racer.post("/api/v1/bookings", json=payload, headers=auth(token)).status_code)

    threads = [threading.Thread(target=reserve, args=(token,)) for token in ("guest", "guest2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [201, 409]
    count = fetch_one("SELECT COUNT(*) AS n FROM bookings WHERE listing_id = ?", (listing["id"],))
    assert count["n"] == 1


def test_listing_in_unpayable_currency_cannot_be_booked(listing, book):
    execute("UPDATE listings SET currency = 'ETB' WHERE id = ?", (listing["id"],))
    response = book()
    assert response.status_code == 400
    assert response.json()["detail"] == "Listings priced in ETB cannot be paid by card"
    assert fetch_one("SELECT COUNT(*) AS n FROM bookings")["n"] == 0
