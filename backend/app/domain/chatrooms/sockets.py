"""Socket.IO namespace for live chat rooms."""

from __future__ import annotations

import logging
from http.cookies import SimpleCookie
from typing import Any, Dict, List, Optional, Set

import socketio
from socketio.exceptions import ConnectionRefusedError

from app.domain.chatrooms.fanout import room_channel, user_channel
from app.domain.chatrooms.gatekeeper import Gatekeeper
from app.domain.chatrooms.policy import RoomPolicyError
from app.domain.chatrooms.users import UserRepository
from app.infra.auth import ADMIN_ROLE, AuthenticatedUser, user_from_token
from app.obs import logging as obs_logging
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _cookie(scope: dict, name: str) -> Optional[str]:
	raw = _header(scope, "cookie")
	if not raw:
		return None
	jar = SimpleCookie()
	jar.load(raw)
	morsel = jar.get(name)
	return morsel.value if morsel else None


class ChatNamespace(socketio.AsyncNamespace):
	"""Per-user channels, per-room channels and the chat send/join events."""

	def __init__(
		self,
		namespace: str = "/chat",
		*,
		gatekeeper: Gatekeeper | None = None,
		users: UserRepository | None = None,
	) -> None:
		super().__init__(namespace)
		self._gatekeeper = gatekeeper or Gatekeeper()
		self._users = users or UserRepository()
		self._sessions: Dict[str, AuthenticatedUser] = {}
		self._online: Dict[str, Set[str]] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		try:
			user = await self._authorise(environ, auth)
		except Exception:
			obs_metrics.socket_disconnected(self.namespace)
			raise ConnectionRefusedError("unauthorized") from None
		self._sessions[sid] = user
		await self.enter_room(sid, user_channel(user.id))
		sids = self._online.setdefault(user.id, set())
		first = not sids
		sids.add(sid)
		if first:
			await self.emit("userOnline", {"userId": user.id})

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		user = self._sessions.pop(sid, None)
		if user is None:
			return
		await self.leave_room(sid, user_channel(user.id))
		sids = self._online.get(user.id)
		if sids is None:
			return
		sids.discard(sid)
		if not sids:
			self._online.pop(user.id, None)
			await self.emit("userOffline", {"userId": user.id})

	async def on_joinChat(self, sid: str, room_id: Any) -> None:  # noqa: N802
		obs_metrics.socket_event(self.namespace, "joinChat")
		user = self._require_user(sid)
		if not isinstance(room_id, str) or not room_id:
			return
		with obs_logging.bound(sid=sid, user_id=user.id, room_id=room_id, event="joinChat"):
			try:
				await self._gatekeeper.authorize_join(room_id, user.id, is_admin=user.is_admin())
			except RoomPolicyError as exc:
				await self._emit_chat_error(sid, room_id, exc.code, exc.detail)
				return
			except Exception:
				logger.exception("joinChat failed")
				await self._emit_chat_error(sid, room_id, "internal_error", "Failed to join room.")
				return
		await self.enter_room(sid, room_channel(room_id))

	async def on_leaveChat(self, sid: str, room_id: Any) -> None:  # noqa: N802
		obs_metrics.socket_event(self.namespace, "leaveChat")
		self._require_user(sid)
		if not isinstance(room_id, str) or not room_id:
			return
		await self.leave_room(sid, room_channel(room_id))

	async def on_sendChatMessage(self, sid: str, payload: Any) -> None:  # noqa: N802
		obs_metrics.socket_event(self.namespace, "sendChatMessage")
		user = self._require_user(sid)
		if not isinstance(payload, dict):
			return
		room_id = payload.get("roomId")
		content = payload.get("content")
		if not isinstance(room_id, str) or not room_id:
			return
		with obs_logging.bound(sid=sid, user_id=user.id, room_id=room_id, event="sendChatMessage"):
			try:
				await self._gatekeeper.authorize_and_record_send(
					room_id,
					user.id,
					content if isinstance(content, str) else "",
					is_admin=user.is_admin(),
					transport="socket",
				)
			except RoomPolicyError as exc:
				await self._emit_chat_error(sid, room_id, exc.code, exc.detail)
			except Exception:
				logger.exception("sendChatMessage failed")
				await self._emit_chat_error(sid, room_id, "internal_error", "Failed to send message.")

	async def evict_user(self, room_id: str, user_id: str) -> int:
		"""Remove every socket of the user from the room channel."""
		channel = room_channel(room_id)
		sids = self.sids_for_user(user_id)
		for sid in sids:
			await self.leave_room(sid, channel)
		return len(sids)

	def sids_for_user(self, user_id: str) -> List[str]:
		return [sid for sid, user in list(self._sessions.items()) if user.id == user_id]

	def online_user_ids(self) -> List[str]:
		return sorted(self._online)

	def _require_user(self, sid: str) -> AuthenticatedUser:
		user = self._sessions.get(sid)
		if not user:
			raise ConnectionRefusedError("unauthenticated")
		return user

	async def _emit_chat_error(self, sid: str, room_id: str, code: str, message: str) -> None:
		await self.emit("chatError", {"roomId": room_id, "error": message, "code": code}, room=sid)

	async def _authorise(self, environ: dict, auth: Optional[dict]) -> AuthenticatedUser:
		scope = environ.get("asgi.scope", environ)
		auth_payload = auth or {}
		token = auth_payload.get("token")
		if not token:
			auth_header = _header(scope, "authorization")
			if auth_header and auth_header.lower().startswith("bearer "):
				token = auth_header.split(" ", 1)[1]
		if not token:
			token = _cookie(scope, settings.access_cookie_name)
		if token:
			user = user_from_token(str(token))
		elif settings.is_dev() and (auth_payload.get("user_id") or auth_payload.get("userId")):
			user = AuthenticatedUser(id=str(auth_payload.get("user_id") or auth_payload.get("userId")))
		else:
			raise ValueError("missing_token")
		record = await self._users.get_user(user.id)
		if record is not None and record.is_admin() and not user.is_admin():
			user.roles = user.roles + (ADMIN_ROLE,)
		return user
