from conftest import LISTING, auth, fetch_one

APPLICATION = {
    "full_name": "Guest One",
    "phone": "+251911223344",
    "property_city": "Bahir Dar",
    "property_type": "guesthouse",
    "message": "Lakeside guesthouse with three rooms.",
    "agreed_to_terms": True,
}


def apply(client, token="guest", **overrides):
    return client.post("/api/v1/users/me/host-application", json=dict(APPLICATION, **overrides), headers=auth(token))


def test_guest_applies_and_admin_approves(client, user_ids):
    response = apply(client)
    assert response.status_code == 201, response.text
    application = response.json()
    assert application["status"] == "pending"
    assert application["user_id"] == user_ids["guest"]
    assert application["email"] == "guest@example.com"
    assert client.get("/api/v1/users/me/host-application", headers=auth("guest")).json()["id"] == application["id"]

    queue = client.get("/api/v1/admin/host-applications", params={"status": "pending"}, headers=auth("admin"))
    assert [item["id"] for item in queue.json()] == [application["id"]]

    approved = client.post(f"/api/v1/admin/host-applications/{application['id']}/approve", headers=auth("admin"))
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["reviewed_by"] == user_ids["admin"]
    assert client.get("/api/v1/users/me", headers=auth("guest")).json()["role"] == "host"
    notes = client.get("/api/v1/notifications", headers=auth("guest")).json()
    assert notes[0]["type"] == "host_application_approved"

    assert client.post("/api/v1/listings", json=LISTING, headers=auth("guest")).status_code == 201
    # Reviewing twice is refused.
    again = client.post(f"/api/v1/admin/host-applications/{application['id']}/reject", headers=auth("admin"))
    assert again.status_code == 409


def test_rejection_notifies_with_reason(client, user_ids):
    application = apply(client).json()
    response = client.post(
        f"/api/v1/admin/host-applications/{application['id']}/reject",
        json={"reason": "Please add photos of the property"},
        headers=auth("admin"),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["rejection_reason"] == "Please add photos of the property"
    assert client.get("/api/v1/users/me", headers=auth("guest")).json()["role"] == "guest"
    note = client.get("/api/v1/notifications", headers=auth("guest")).json()[0]
    assert note["type"] == "host_application_rejected"
    assert note["body"] == "Please add photos of the property"

    assert client.post("/api/v1/listings", json=LISTING, headers=auth("guest")).status_code == 403
    # A rejected applicant may apply again.
    assert apply(client).status_code == 201


def test_one_pending_application_at_a_time(client, user_ids):
    assert apply(client).status_code == 201
    assert apply(client).status_code == 409
    assert fetch_one("SELECT COUNT(*) AS n FROM host_applications WHERE user_id = ?", (user_ids["guest"],))["n"] == 1


def test_hosts_and_admins_do_not_apply(client, listing):
    assert apply(client, token="host").status_code == 409
    assert apply(client, token="admin").status_code == 409


def test_application_validation(client, user_ids):
    assert apply(client, agreed_to_terms=False).status_code == 422
    assert apply(client, phone="123").status_code == 422
    assert apply(client, property_type="castle").status_code == 422
    assert apply(client, full_name="   ").status_code == 422
    assert apply(client, email="not-an-email").status_code == 422
    assert client.get("/api/v1/users/me/host-application", headers=auth("guest")).status_code == 404


def test_unknown_application(client, user_ids):
    assert client.post("/api/v1/admin/host-applications/999/approve", headers=auth("admin")).status_code == 404
    assert client.post("/api/v1/admin/host-applications/999/reject", headers=auth("guest")).status_code == 403


def test_payout_opt_in_requires_approval(client, user_ids):
    body = {"stripe_connect_account_id": "acct_guest1"}
    assert client.post("/api/v1/users/me/host", json=body, headers=auth("guest")).status_code == 403
    stored = fetch_one("SELECT role, stripe_connect_account_id FROM users WHERE id = ?", (user_ids["guest"],))
    assert stored == {"role": "guest", "stripe_connect_account_id": None}


def test_verification_can_be_switched_off(client, user_ids):
    client.put("/api/v1/admin/settings", json={"require_host_verification": False}, headers=auth("admin"))
    response = client.post("/api/v1/users/me/host", json={}, headers=auth("guest"))
    assert response.status_code == 200
    assert response.json()["role"] == "host"
