import pytest
import pytest_asyncio

from app.domain.chatrooms.models import ChatUser
from app.domain.chatrooms.notifications import NotificationRepository
from app.domain.chatrooms.users import UserRepository

ADMIN = {"X-User-Id": "admin-1", "X-User-Roles": "admin"}
ALICE = {"X-User-Id": "alice-1"}
BOB = {"X-User-Id": "bob-1"}
RECORD_ADMIN = {"X-User-Id": "admin-1"}


@pytest_asyncio.fixture(autouse=True)
async def seeded_users():
    users = UserRepository()
    await users.upsert_user(ChatUser(id="admin-1", username="admin", display_name="Admin", role="admin"))
    await users.upsert_user(ChatUser(id="alice-1", username="alice", display_name="Alice"))
    await users.upsert_user(ChatUser(id="bob-1", username="bob", display_name="Bob"))


async def _create_room(api_client, name="general", access_type="open") -> str:
    response = await api_client.post(
        "/chatrooms",
        json={"name": name, "description": "Team chat", "accessType": access_type},
        headers=ADMIN,
    )
    assert response.status_code == 201
    return response.json()["roomId"]


@pytest.mark.asyncio
async def test_open_room_send_and_history(api_client):
    room_id = await _create_room(api_client)

    listing = await api_client.get("/chatrooms", headers=ALICE)
    assert listing.status_code == 200
    [summary] = listing.json()["rooms"]
    assert summary["id"] == room_id
    assert summary["creatorName"] == "Admin"
    assert summary["isJoined"] is False

    sent = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "<b>hello</b>"}, headers=ALICE)
    assert sent.status_code == 201
    message = sent.json()["message"]
    assert message["content"] == "<b>hello</b>"
    assert message["roomId"] == room_id
    assert message["displayName"] == "Alice"

    history = await api_client.get(f"/chatrooms/{room_id}/messages", headers=ALICE)
    assert history.status_code == 200
    body = history.json()
    assert [item["content"] for item in body["messages"]] == ["<b>hello</b>"]
    assert body["members"][0]["id"] == "alice-1"
    assert body["isMuted"] is False
    assert body["pagination"] == {"page": 1, "limit": 50, "total": 1, "totalPages": 1}

    listing = await api_client.get("/chatrooms", headers=ALICE)
    assert listing.json()["rooms"][0]["isJoined"] is True
    assert listing.json()["rooms"][0]["messageCount"] == 1


@pytest.mark.asyncio
async def test_kicked_member_is_blocked_until_readded(api_client):
    room_id = await _create_room(api_client)
    await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "hi"}, headers=ALICE)

    kicked = await api_client.post(f"/chatrooms/{room_id}/kick", json={"userId": "alice-1"}, headers=ADMIN)
    assert kicked.status_code == 200

    blocked = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "again"}, headers=ALICE)
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "kicked"

    join = await api_client.post(f"/chatrooms/{room_id}/join", headers=ALICE)
    assert join.status_code == 403
    assert join.json()["code"] == "kicked"

    added = await api_client.post(f"/chatrooms/{room_id}/add-member", json={"userId": "alice-1"}, headers=ADMIN)
    assert added.status_code == 200

    sent = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "thanks"}, headers=ALICE)
    assert sent.status_code == 201

    inbox = await NotificationRepository().list_for_user("alice-1")
    assert [item.type for item in inbox] == ["chat"]


@pytest.mark.asyncio
async def test_admin_cannot_kick_self(api_client):
    room_id = await _create_room(api_client)
    response = await api_client.post(f"/chatrooms/{room_id}/kick", json={"userId": "admin-1"}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["code"] == "cannot_kick_self"


@pytest.mark.asyncio
async def test_invite_only_room_requires_membership(api_client):
    room_id = await _create_room(api_client, name="founders", access_type="invite")

    join = await api_client.post(f"/chatrooms/{room_id}/join", headers=BOB)
    assert join.status_code == 403
    assert join.json()["code"] == "not_invited"

    send = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "hi"}, headers=BOB)
    assert send.status_code == 403
    assert send.json()["code"] == "not_invited"

    history = await api_client.get(f"/chatrooms/{room_id}/messages", headers=BOB)
    assert history.status_code == 403

    added = await api_client.post(f"/chatrooms/{room_id}/add-member", json={"userId": "bob-1"}, headers=ADMIN)
    assert added.status_code == 200
    again = await api_client.post(f"/chatrooms/{room_id}/add-member", json={"userId": "bob-1"}, headers=ADMIN)
    assert again.status_code == 409

    join = await api_client.post(f"/chatrooms/{room_id}/join", headers=BOB)
    assert join.status_code == 409

    send = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "hi"}, headers=BOB)
    assert send.status_code == 201


@pytest.mark.asyncio
async def test_add_member_requires_existing_user(api_client):
    room_id = await _create_room(api_client)
    response = await api_client.post(f"/chatrooms/{room_id}/add-member", json={"userId": "nobody"}, headers=ADMIN)
    assert response.status_code == 404
    assert response.json()["code"] == "user_not_found"


@pytest.mark.asyncio
async def test_mute_toggle_blocks_sending(api_client):
    room_id = await _create_room(api_client)
    await api_client.post(f"/chatrooms/{room_id}/join", headers=BOB)

    muted = await api_client.post(f"/chatrooms/{room_id}/mute", json={"userId": "bob-1"}, headers=ADMIN)
    assert muted.status_code == 200
    assert muted.json()["isMuted"] is True

    send = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "hi"}, headers=BOB)
    assert send.status_code == 403
    assert send.json()["code"] == "muted"

    unmuted = await api_client.post(f"/chatrooms/{room_id}/mute", json={"userId": "bob-1"}, headers=ADMIN)
    assert unmuted.json()["isMuted"] is False

    missing = await api_client.post(f"/chatrooms/{room_id}/mute", json={"userId": "alice-1"}, headers=ADMIN)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_flooding_auto_mutes_sender(api_client):
    room_id = await _create_room(api_client)
    for index in range(10):
        response = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": f"m{index}"}, headers=BOB)
        assert response.status_code == 201

    response = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "spam"}, headers=BOB)
    assert response.status_code == 403
    assert response.json()["code"] == "auto_muted"

    history = await api_client.get(f"/chatrooms/{room_id}/messages", headers=BOB)
    assert history.json()["isMuted"] is True


@pytest.mark.asyncio
async def test_blank_and_invalid_content(api_client):
    room_id = await _create_room(api_client)

    empty = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": ""}, headers=ALICE)
    assert empty.status_code == 422
    assert empty.json()["error"] == "validation_error"

    blank = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "   "}, headers=ALICE)
    assert blank.status_code == 400
    assert blank.json()["code"] == "invalid_input"


@pytest.mark.asyncio
async def test_unknown_sender_is_dropped_silently(api_client):
    room_id = await _create_room(api_client)
    response = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "hi"}, headers={"X-User-Id": "ghost"})
    assert response.status_code == 200
    assert response.json() == {"message": None}


@pytest.mark.asyncio
async def test_mentions_create_notifications(api_client):
    room_id = await _create_room(api_client)
    await api_client.post(f"/chatrooms/{room_id}/join", headers=BOB)

    response = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "ping @bob"}, headers=ALICE)
    assert response.status_code == 201

    inbox = await NotificationRepository().list_for_user("bob-1")
    assert len(inbox) == 1
    assert inbox[0].type == "mention"
    assert inbox[0].reference_id == room_id


@pytest.mark.asyncio
async def test_delete_message_permissions(api_client):
    room_id = await _create_room(api_client)
    other_room = await _create_room(api_client, name="random")
    sent = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "mine"}, headers=ALICE)
    message_id = sent.json()["message"]["id"]

    forbidden = await api_client.delete(f"/chatrooms/{room_id}/messages/{message_id}", headers=BOB)
    assert forbidden.status_code == 403

    mismatch = await api_client.delete(f"/chatrooms/{other_room}/messages/{message_id}", headers=ALICE)
    assert mismatch.status_code == 400
    assert mismatch.json()["code"] == "message_room_mismatch"

    deleted = await api_client.delete(f"/chatrooms/{room_id}/messages/{message_id}", headers=ALICE)
    assert deleted.status_code == 200

    missing = await api_client.delete(f"/chatrooms/{room_id}/messages/{message_id}", headers=ALICE)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_purges_user_messages(api_client):
    room_id = await _create_room(api_client)
    for content in ("one", "two", "three"):
        await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": content}, headers=ALICE)
    await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "keep"}, headers=BOB)

    response = await api_client.delete(f"/chatrooms/{room_id}/users/alice-1/messages", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["message"] == "Deleted 3 messages"

    history = await api_client.get(f"/chatrooms/{room_id}/messages", headers=BOB)
    assert [item["content"] for item in history.json()["messages"]] == ["keep"]


@pytest.mark.asyncio
async def test_settings_update_and_deactivate(api_client):
    room_id = await _create_room(api_client)

    updated = await api_client.put(
        f"/chatrooms/{room_id}/settings",
        json={"name": "Renamed", "accessType": "invite"},
        headers=ADMIN,
    )
    assert updated.status_code == 200
    [summary] = (await api_client.get("/chatrooms", headers=ADMIN)).json()["rooms"]
    assert summary["name"] == "Renamed"
    assert summary["accessType"] == "invite"

    removed = await api_client.delete(f"/chatrooms/{room_id}", headers=ADMIN)
    assert removed.status_code == 200
    assert (await api_client.get("/chatrooms", headers=ADMIN)).json()["rooms"] == []

    send = await api_client.post(f"/chatrooms/{room_id}/messages", json={"content": "hi"}, headers=ADMIN)
    assert send.status_code == 404
    assert send.json()["code"] == "room_not_found"

    again = await api_client.delete(f"/chatrooms/{room_id}", headers=ADMIN)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(api_client):
    response = await api_client.post("/chatrooms", json={"name": "sneaky"}, headers=ALICE)
    assert response.status_code == 403
    assert response.json()["error"] == "insufficient_role"

    anonymous = await api_client.get("/chatrooms")
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_admin_role_on_user_record_grants_admin_routes(api_client):
    created = await api_client.post("/chatrooms", json={"name": "ops"}, headers=RECORD_ADMIN)
    assert created.status_code == 201
    room_id = created.json()["roomId"]

    added = await api_client.post(f"/chatrooms/{room_id}/add-member", json={"userId": "alice-1"}, headers=RECORD_ADMIN)
    assert added.status_code == 200

    kicked = await api_client.post(f"/chatrooms/{room_id}/kick", json={"userId": "alice-1"}, headers=RECORD_ADMIN)
    assert kicked.status_code == 200

    refused = await api_client.post(f"/chatrooms/{room_id}/kick", json={"userId": "alice-1"}, headers=BOB)
    assert refused.status_code == 403
    assert refused.json()["error"] == "insufficient_role"
