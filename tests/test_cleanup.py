import asyncio
from datetime import datetime, timedelta, timezone

from conftest import CRON_SECRET, auth, execute, fetch_one, future
from enatbet_api.app.core.config import settings
from enatbet_api.app.services.maintenance_service import MaintenanceService

URL = "/api/v1/cron/cleanup-bookings"
CRON = {"Authorization": f"Bearer {CRON_SECRET}"}


def test_cron_secret_is_required(client):
    assert client.get(URL).status_code == 401
    assert client.get(URL, headers={"Authorization": "Bearer wrong"}).status_code == 401
    # A user token is not a cron secret.
    assert client.get(URL, headers=auth("admin")).status_code == 401


def test_cron_secret_not_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "")
    assert client.get(URL, headers=CRON).status_code == 500


def test_nothing_to_clean(client):
    response = client.get(URL, headers=CRON)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["cleaned_count"] == 0


def test_expired_hold_is_cancelled_by_system(client, book):
    booking = book().json()
    kept = book(check_in_days=60, token="guest2").json()
    execute("UPDATE bookings SET expires_at = '2000-01-01 00:00:00' WHERE id = ?", (booking["id"],))

    data = client.get(URL, headers=CRON).json()
    assert data["expired_holds"] == 1
    stored = fetch_one("SELECT status, cancelled_by, cancellation_reason FROM bookings WHERE id = ?", (booking["id"],))
    assert stored == {"status": "cancelled_by_system", "cancelled_by": "system", "cancellation_reason": "Payment timeout"}
    assert fetch_one("SELECT status FROM bookings WHERE id = ?", (kept["id"],))["status"] == "pending_payment"


def test_stale_payment_is_released(client, book):
    booking = book().json()
    client.post("/api/v1/stripe/create-payment", json={"booking_id": booking["id"]}, headers=auth("guest"))
    execute("UPDATE bookings SET created_at = '2000-01-01 00:00:00' WHERE id = ?", (booking["id"],))

    data = client.get(URL, headers=CRON).json()
    assert data["stale_payments"] == 1
    assert fetch_one("SELECT status FROM bookings")["status"] == "cancelled_by_system"
    notifications = client.get("/api/v1/notifications", headers=auth("guest")).json()
    assert "booking_expired" in [n["type"] for n in notifications]


def test_past_stay_is_completed_and_block_pruned(client, paid_booking):
    execute(
        "UPDATE bookings SET check_in = ?, check_out = ? WHERE id = ?",
        (future(-5), future(-2), paid_booking["id"]),
    )
    execute(
        "UPDATE calendar_blocks SET start_date = ?, end_date = ? WHERE booking_id = ?",
        (future(-5), future(-2), paid_booking["id"]),
    )
    data = client.get(URL, headers=CRON).json()
    assert data["completed_stays"] == 1
    assert data["removed_blocks"] == 1
    assert data["cleaned_count"] == 2
    stored = fetch_one("SELECT status, completed_at FROM bookings WHERE id = ?", (paid_booking["id"],))
    assert stored["status"] == "completed"
    assert stored["completed_at"]


def test_cleanup_can_run_directly(client, book):
    booking = book().json()
    later = datetime.now(timezone.utc) + timedelta(hours=2)
    result = asyncio.run(MaintenanceService.cleanup_bookings(now=later))
    assert result.expired_holds == 1
    assert fetch_one("SELECT status FROM bookings WHERE id = ?", (booking["id"],))["status"] == "cancelled_by_system"
    audit = client.get("/api/v1/admin/audit", params={"action": "cleanup"}, headers=auth("admin")).json()
    assert len(audit) == 1
