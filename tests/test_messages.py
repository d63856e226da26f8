from conftest import auth, fetch_one


def send(client, token, **payload):
    return client.post("/api/v1/messages", json=payload, headers=auth(token))


def test_guest_starts_conversation_with_host(client, listing, user_ids):
    response = send(
        client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"],
        content="  Is early check-in possible?  ",
    )
    assert response.status_code == 201, response.text
    conversation_id = response.json()["conversation_id"]

    conversations = client.get("/api/v1/messages/conversations", headers=auth("host")).json()
    assert len(conversations) == 1
    conversation = conversations[0]
    assert conversation["id"] == conversation_id
    assert conversation["listing_id"] == listing["id"]
    assert conversation["participant_ids"] == sorted([user_ids["guest"], user_ids["host"]])
    assert conversation["last_message"] == "Is early check-in possible?"
    assert conversation["last_sender_id"] == user_ids["guest"]
    assert conversation["unread_count"] == 1

    mine = client.get("/api/v1/messages/conversations", headers=auth("guest")).json()
    assert mine[0]["unread_count"] == 0


def test_same_pair_reuses_conversation(client, listing, user_ids):
    first = send(client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"], content="Hello")
    second = send(client, "host", recipient_id=user_ids["guest"], listing_id=listing["id"], content="Hi there")
    assert first.json()["conversation_id"] == second.json()["conversation_id"]


def test_reply_and_read(client, listing, user_ids):
    conversation_id = send(
        client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"], content="Hello"
    ).json()["conversation_id"]
    send(client, "guest", conversation_id=conversation_id, content="Is parking included?")
    reply = send(client, "host", conversation_id=conversation_id, content="Yes, one spot.")
    assert reply.status_code == 201

    url = f"/api/v1/messages/conversations/{conversation_id}"
    messages = client.get(url, headers=auth("guest")).json()
    assert [m["content"] for m in messages] == ["Hello", "Is parking included?", "Yes, one spot."]
    older = client.get(url, params={"before_id": messages[-1]["id"], "limit": 1}, headers=auth("guest")).json()
    assert [m["content"] for m in older] == ["Is parking included?"]

    host_view = client.get("/api/v1/messages/conversations", headers=auth("host")).json()[0]
    assert host_view["unread_count"] == 2
    assert client.post(f"{url}/read", headers=auth("host")).status_code == 204
    host_view = client.get("/api/v1/messages/conversations", headers=auth("host")).json()[0]
    assert host_view["unread_count"] == 0


def test_outsiders_cannot_read_or_write(client, listing, user_ids):
    conversation_id = send(
        client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"], content="Hello"
    ).json()["conversation_id"]
    url = f"/api/v1/messages/conversations/{conversation_id}"
    assert client.get(url, headers=auth("outsider")).status_code == 403
    assert send(client, "outsider", conversation_id=conversation_id, content="Hi!").status_code == 403
    assert client.get("/api/v1/messages/conversations/999", headers=auth("guest")).status_code == 404


def test_invalid_messages(client, listing, user_ids):
    assert send(client, "guest", recipient_id=user_ids["host"], content="No listing").status_code == 400
    assert send(
        client, "guest", recipient_id=user_ids["guest"], listing_id=listing["id"], content="Me"
    ).status_code == 400
    # Neither side hosts the listing.
    assert send(
        client, "guest", recipient_id=user_ids["guest2"], listing_id=listing["id"], content="Hey"
    ).status_code == 400
    assert send(
        client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"], content="   "
    ).status_code == 422
    assert send(
        client, "guest", recipient_id=999, listing_id=listing["id"], content="Hello"
    ).status_code == 404


def test_message_notifications(client, listing, user_ids):
    send(client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"], content="Hello")
    unread = client.get("/api/v1/notifications", params={"unread_only": True}, headers=auth("host")).json()
    message_notes = [n for n in unread if n["type"] == "new_message"]
    assert len(message_notes) == 1
    assert message_notes[0]["body"] == "Hello"

    marked = client.post(f"/api/v1/notifications/{message_notes[0]['id']}/read", headers=auth("host"))
    assert marked.status_code == 200
    assert marked.json()["is_read"] is True
    other = client.post(f"/api/v1/notifications/{message_notes[0]['id']}/read", headers=auth("guest"))
    assert other.status_code == 404

    assert client.post("/api/v1/notifications/read-all", headers=auth("host")).status_code == 200
    assert client.get("/api/v1/notifications", params={"unread_only": True}, headers=auth("host")).json() == []


def test_booking_reference_is_checked(client, listing, book, user_ids):
    booking = book().json()
    unknown = send(
        client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"], booking_id=9999, content="Hi"
    )
    assert unknown.status_code == 404
    someone_elses = send(
        client, "guest2", recipient_id=user_ids["host"], listing_id=listing["id"],
        booking_id=booking["id"], content="About my stay",
    )
    assert someone_elses.status_code == 403

    response = send(
        client, "guest", recipient_id=user_ids["host"], listing_id=listing["id"],
        booking_id=booking["id"], content="We land at noon",
    )
    assert response.status_code == 201
    conversation = fetch_one("SELECT booking_id FROM conversations WHERE id = ?", (response.json()["conversation_id"],))
    assert conversation["booking_id"] == booking["id"]
