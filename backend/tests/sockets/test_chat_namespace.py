from unittest.mock import AsyncMock

import pytest
import socketio
from socketio.exceptions import ConnectionRefusedError

from app.domain.chatrooms.fanout import DeliveryFanout
from app.domain.chatrooms.gatekeeper import Gatekeeper
from app.domain.chatrooms.models import ChatUser
from app.domain.chatrooms.notifications import NotificationService
from app.domain.chatrooms.repository import MessageRepository, RoomRepository
from app.domain.chatrooms.sockets import ChatNamespace
from app.domain.chatrooms.users import UserRepository
from app.infra import jwt as jwt_helper


def _environ(headers=None) -> dict:
	return {"asgi.scope": {"headers": headers or []}}


async def _build_namespace():
	server = socketio.AsyncServer(async_mode="asgi")
	users = UserRepository()
	namespace = ChatNamespace(users=users)
	fanout = DeliveryFanout(namespace=namespace)
	namespace._gatekeeper = Gatekeeper(
		users=users,
		fanout=fanout,
		notifications=NotificationService(fanout=fanout),
	)
	server.register_namespace(namespace)
	namespace.emit = AsyncMock()
	namespace.enter_room = AsyncMock()
	namespace.leave_room = AsyncMock()
	await users.upsert_user(ChatUser(id="alice", username="alice", display_name="Alice"))
	await users.upsert_user(ChatUser(id="root", username="root", display_name="Root", role="admin"))
	return namespace


async def _open_room(access_type: str = "open") -> str:
	room = await RoomRepository().create_room(
		name="general",
		description="",
		created_by="root",
		access_type=access_type,
	)
	return room.id


def _emitted(namespace, event):
	return [call for call in namespace.emit.await_args_list if call.args[0] == event]


@pytest.mark.asyncio
async def test_connect_requires_credentials():
	namespace = await _build_namespace()

	with pytest.raises(ConnectionRefusedError):
		await namespace.trigger_event("connect", "sid-1", _environ(), None)


@pytest.mark.asyncio
async def test_connect_with_bearer_token_joins_user_channel():
	namespace = await _build_namespace()
	token = jwt_helper.encode_access({"sub": "alice"})

	await namespace.trigger_event(
		"connect",
		"sid-1",
		_environ([(b"authorization", f"Bearer {token}".encode())]),
		None,
	)

	namespace.enter_room.assert_awaited_once_with("sid-1", "user:alice")
	assert namespace.online_user_ids() == ["alice"]
	assert len(_emitted(namespace, "userOnline")) == 1


@pytest.mark.asyncio
async def test_presence_events_fire_on_first_and_last_socket():
	namespace = await _build_namespace()

	await namespace.trigger_event("connect", "sid-1", _environ(), {"user_id": "alice"})
	await namespace.trigger_event("connect", "sid-2", _environ(), {"user_id": "alice"})
	assert len(_emitted(namespace, "userOnline")) == 1

	await namespace.trigger_event("disconnect", "sid-1", "client disconnect")
	assert _emitted(namespace, "userOffline") == []

	await namespace.trigger_event("disconnect", "sid-2", "client disconnect")
	[offline] = _emitted(namespace, "userOffline")
	assert offline.args[1] == {"userId": "alice"}
	assert namespace.online_user_ids() == []


@pytest.mark.asyncio
async def test_admin_role_is_taken_from_user_record():
	namespace = await _build_namespace()

	await namespace.trigger_event("connect", "sid-1", _environ(), {"userId": "root"})

	assert namespace._sessions["sid-1"].is_admin()


@pytest.mark.asyncio
async def test_join_open_room_enters_room_channel():
	namespace = await _build_namespace()
	room_id = await _open_room()
	await namespace.trigger_event("connect", "sid-1", _environ(), {"user_id": "alice"})

	await namespace.trigger_event("joinChat", "sid-1", room_id)

	namespace.enter_room.assert_any_await("sid-1", f"chat:{room_id}")
	assert _emitted(namespace, "chatError") == []


@pytest.mark.asyncio
async def test_join_invite_room_emits_chat_error():
	namespace = await _build_namespace()
	room_id = await _open_room("invite")
	await namespace.trigger_event("connect", "sid-1", _environ(), {"user_id": "alice"})

	await namespace.trigger_event("joinChat", "sid-1", room_id)

	[error] = _emitted(namespace, "chatError")
	assert error.args[1]["code"] == "not_invited"
	assert error.kwargs["room"] == "sid-1"
	assert namespace.enter_room.await_count == 1


@pytest.mark.asyncio
async def test_send_broadcasts_to_room_channel():
	namespace = await _build_namespace()
	room_id = await _open_room()
	await namespace.trigger_event("connect", "sid-1", _environ(), {"user_id": "alice"})

	await namespace.trigger_event("sendChatMessage", "sid-1", {"roomId": room_id, "content": "hello"})

	[broadcast] = _emitted(namespace, "newChatMessage")
	assert broadcast.kwargs["room"] == f"chat:{room_id}"
	assert broadcast.args[1]["message"]["content"] == "hello"
	_, total = await MessageRepository().fetch_messages(room_id, offset=0, limit=10)
	assert total == 1


@pytest.mark.asyncio
async def test_blank_send_emits_invalid_input():
	namespace = await _build_namespace()
	room_id = await _open_room()
	await namespace.trigger_event("connect", "sid-1", _environ(), {"user_id": "alice"})

	await namespace.trigger_event("sendChatMessage", "sid-1", {"roomId": room_id, "content": "  "})

	[error] = _emitted(namespace, "chatError")
	assert error.args[1] == {"roomId": room_id, "error": "Message content is required.", "code": "invalid_input"}


@pytest.mark.asyncio
async def test_kick_evicts_every_socket_and_blocks_rejoin():
	namespace = await _build_namespace()
	room_id = await _open_room()
	await namespace.trigger_event("connect", "sid-1", _environ(), {"user_id": "alice"})
	await namespace.trigger_event("connect", "sid-2", _environ(), {"user_id": "alice"})
	await namespace.trigger_event("sendChatMessage", "sid-1", {"roomId": room_id, "content": "hi"})

	await namespace._gatekeeper.record_kick(room_id, "alice")

	namespace.leave_room.assert_any_await("sid-1", f"chat:{room_id}")
	namespace.leave_room.assert_any_await("sid-2", f"chat:{room_id}")
	[kicked] = _emitted(namespace, "memberKicked")
	assert kicked.kwargs["room"] == "user:alice"

	await namespace.trigger_event("joinChat", "sid-1", room_id)
	await namespace.trigger_event("sendChatMessage", "sid-2", {"roomId": room_id, "content": "let me back"})
	codes = [call.args[1]["code"] for call in _emitted(namespace, "chatError")]
	assert codes == ["kicked", "kicked"]
	_, total = await MessageRepository().fetch_messages(room_id, offset=0, limit=10)
	assert total == 1


@pytest.mark.asyncio
async def test_events_from_unknown_sid_are_refused():
	namespace = await _build_namespace()

	with pytest.raises(ConnectionRefusedError):
		await namespace.trigger_event("sendChatMessage", "ghost-sid", {"roomId": "r", "content": "hi"})
