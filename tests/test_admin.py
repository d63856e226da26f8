import pytest

from conftest import LISTING, auth, fetch_one


@pytest.mark.parametrize(
    "path",
    ["/verify", "/dashboard", "/analytics", "/users", "/listings", "/bookings", "/payments",
     "/payments/stats", "/reviews", "/settings", "/alerts", "/audit", "/host-applications"],
)
def test_admin_routes_require_admin(client, user_ids, path):
    assert client.get(f"/api/v1/admin{path}").status_code == 401
    assert client.get(f"/api/v1/admin{path}", headers=auth("guest")).status_code == 403
    assert client.get(f"/api/v1/admin{path}", headers=auth("admin")).status_code == 200


def test_verify(client, user_ids):
    response = client.get("/api/v1/admin/verify", headers=auth("admin"))
    assert response.json() == {"is_admin": True, "user_id": user_ids["admin"]}


def test_dashboard(client, paid_booking):
    stats = client.get("/api/v1/admin/dashboard", headers=auth("admin")).json()
    assert stats["total_users"] == 5
    assert stats["total_hosts"] == 1
    assert stats["total_listings"] == 1
    assert stats["active_bookings"] == 1
    assert stats["pending_approvals"] == 0
    assert stats["monthly_revenue"] == 434.5


def test_analytics_and_payment_stats(client, paid_booking):
    analytics = client.get("/api/v1/admin/analytics", params={"months": 3}, headers=auth("admin")).json()
    assert len(analytics["user_growth"]) == 3
    assert analytics["user_growth"][-1]["value"] == 5
    assert analytics["revenue_data"][-1]["value"] == 434.5
    assert analytics["top_locations"] == [{"label": "Addis Ababa", "count": 1}]
    assert analytics["avg_booking_value"] == 434.5
    assert analytics["repeat_guest_rate"] == 0.0

    stats = client.get("/api/v1/admin/payments/stats", headers=auth("admin")).json()
    assert stats == {
        "total_revenue": 434.5,
        "platform_fees": 0.0,
        "refunded": 0.0,
        "completed_payouts": 0.0,
        "pending_payouts": 434.5,
    }
    payments = client.get("/api/v1/admin/payments", params={"status": "succeeded"}, headers=auth("admin")).json()
    assert [p["booking_id"] for p in payments] == [paid_booking["id"]]
    bookings = client.get("/api/v1/admin/bookings", params={"status": "confirmed"}, headers=auth("admin")).json()
    assert [b["id"] for b in bookings] == [paid_booking["id"]]


def test_settings(client, user_ids):
    defaults = client.get("/api/v1/admin/settings", headers=auth("admin")).json()
    assert defaults["commission_rate"] == 15.0
    assert defaults["max_booking_days"] == 90
    assert defaults["enable_guest_reviews"] is True

    response = client.put(
        "/api/v1/admin/settings", json={"commission_rate": 12.5, "min_booking_days": 2}, headers=auth("admin")
    )
    assert response.status_code == 200
    assert response.json()["commission_rate"] == 12.5
    stored = client.get("/api/v1/admin/settings", headers=auth("admin")).json()
    assert (stored["commission_rate"], stored["min_booking_days"]) == (12.5, 2)

    invalid = client.put("/api/v1/admin/settings", json={"min_booking_days": 120}, headers=auth("admin"))
    assert invalid.status_code == 400
    assert client.put("/api/v1/admin/settings", json={"currency": "usd"}, headers=auth("admin")).status_code == 422


def test_min_stay_setting_applies_to_bookings(client, book):
    client.put("/api/v1/admin/settings", json={"min_booking_days": 4}, headers=auth("admin"))
    response = book(nights=3)
    assert response.status_code == 400
    assert response.json()["detail"] == "Minimum stay is 4 nights"


def test_suspended_user_is_locked_out(client, user_ids):
    url = f"/api/v1/admin/users/{user_ids['guest']}/status"
    response = client.patch(url, json={"status": "suspended"}, headers=auth("admin"))
    assert response.status_code == 200
    assert response.json()["status"] == "suspended"

    blocked = client.get("/api/v1/users/me", headers=auth("guest"))
    assert blocked.status_code == 403
    assert blocked.json()["detail"] == "Account suspended"

    client.patch(url, json={"status": "active"}, headers=auth("admin"))
    assert client.get("/api/v1/users/me", headers=auth("guest")).status_code == 200


def test_user_status_errors(client, user_ids):
    own = client.patch(
        f"/api/v1/admin/users/{user_ids['admin']}/status", json={"status": "suspended"}, headers=auth("admin")
    )
    assert own.status_code == 400
    missing = client.patch("/api/v1/admin/users/999/status", json={"status": "suspended"}, headers=auth("admin"))
    assert missing.status_code == 404
    bad = client.patch(
        f"/api/v1/admin/users/{user_ids['guest']}/status", json={"status": "banned"}, headers=auth("admin")
    )
    assert bad.status_code == 422


def test_list_users_by_role(client, listing, user_ids):
    hosts = client.get("/api/v1/admin/users", params={"filter": "host"}, headers=auth("admin")).json()
    assert [u["id"] for u in hosts] == [user_ids["host"]]
    everyone = client.get("/api/v1/admin/users", headers=auth("admin")).json()
    assert len(everyone) == 5


def test_listing_moderation(client, user_ids):
    created = client.post("/api/v1/listings", json=LISTING, headers=auth("host")).json()
    queue = client.get(
        "/api/v1/admin/listings", params={"status": "pending_approval"}, headers=auth("admin")
    ).json()
    assert [item["id"] for item in queue] == [created["id"]]

    response = client.post(
        f"/api/v1/admin/listings/{created['id']}/reject",
        json={"reason": "Photos are missing"},
        headers=auth("admin"),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    notification = client.get("/api/v1/notifications", headers=auth("host")).json()[0]
    assert notification["type"] == "listing_rejected"
    assert notification["body"] == "Photos are missing"
    assert client.post("/api/v1/admin/listings/999/approve", headers=auth("admin")).status_code == 404


def test_resolve_alert(client, paid_booking, fake_stripe):
    fake_stripe.refund_error = RuntimeError("network down")
    client.post(f"/api/v1/bookings/{paid_booking['id']}/cancel", headers=auth("guest"))
    alert = client.get("/api/v1/admin/alerts", params={"resolved": False}, headers=auth("admin")).json()[0]
    assert alert["details"] == {"error": "network down"}

    url = f"/api/v1/admin/alerts/{alert['id']}/resolve"
    resolved = client.post(url, headers=auth("admin"))
    assert resolved.status_code == 200
    assert resolved.json()["resolved"] is True
    assert resolved.json()["resolved_at"]
    assert client.post(url, headers=auth("admin")).status_code == 409
    assert client.post("/api/v1/admin/alerts/999/resolve", headers=auth("admin")).status_code == 404
    assert client.get("/api/v1/admin/alerts", params={"resolved": False}, headers=auth("admin")).json() == []


def test_audit_log(client, listing, user_ids):
    logs = client.get(
        "/api/v1/admin/audit", params={"object_type": "listing", "action": "approve"}, headers=auth("admin")
    ).json()
    assert len(logs) == 1
    assert logs[0]["user_id"] == user_ids["admin"]
    assert logs[0]["object_id"] == listing["id"]
    created = client.get(
        "/api/v1/admin/audit", params={"user_id": user_ids["host"]}, headers=auth("admin")
    ).json()
    assert [entry["action"] for entry in created] == ["create"]
    assert fetch_one("SELECT COUNT(*) AS n FROM audit_logs WHERE object_type = 'listing'")["n"] == 2
