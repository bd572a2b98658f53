"""Real-time delivery to socket channels.

Every emit targets either a room channel (`chat:<room_id>`) or a per-user
channel (`user:<user_id>`). Delivery is best-effort: a failed emit is logged
and counted, never raised to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def room_channel(room_id: str) -> str:
	return f"chat:{room_id}"


def user_channel(user_id: str) -> str:
	return f"user:{user_id}"


class ChannelNamespace(Protocol):
	async def emit(self, event: str, data: Any = None, to: Optional[str] = None, room: Optional[str] = None, **kwargs: Any) -> None: ...

	async def evict_user(self, room_id: str, user_id: str) -> int: ...


_namespace: Optional[ChannelNamespace] = None


def set_namespace(namespace: Optional[ChannelNamespace]) -> None:
	global _namespace
	_namespace = namespace


def get_namespace() -> Optional[ChannelNamespace]:
	return _namespace


class DeliveryFanout:
	def __init__(self, namespace: Optional[ChannelNamespace] = None) -> None:
		self._explicit = namespace

	@property
	def namespace(self) -> Optional[ChannelNamespace]:
		return self._explicit or _namespace

	async def _emit(self, event: str, payload: dict, *, room: Optional[str] = None) -> None:
		namespace = self.namespace
		if namespace is None:
			return
		try:
			await namespace.emit(event, payload, room=room)
		except Exception:
			obs_metrics.chat_side_effect_failed("fanout")
			logger.warning("socket emit failed", exc_info=True, extra={"event": event, "channel": room})

	async def broadcast(self, room_id: str, message: dict) -> None:
		await self._emit("newChatMessage", {"roomId": room_id, "message": message}, room=room_channel(room_id))

	async def evict_user(self, room_id: str, user_id: str) -> int:
		"""Detach every live connection of the user from the room channel."""
		namespace = self.namespace
		if namespace is None:
			return 0
		try:
			return await namespace.evict_user(room_id, user_id)
		except Exception:
			obs_metrics.chat_side_effect_failed("evict")
			logger.warning("room eviction failed", exc_info=True, extra={"room_id": room_id, "target_user_id": user_id})
			return 0

	async def notify_kicked(self, room_id: str, user_id: str) -> None:
		await self._emit("memberKicked", {"roomId": room_id}, room=user_channel(user_id))

	async def member_list_updated(self, room_id: str) -> None:
		await self._emit("memberListUpdated", {"roomId": room_id}, room=room_channel(room_id))

	async def message_deleted(self, room_id: str, message_id: str) -> None:
		await self._emit("messageDeleted", {"roomId": room_id, "messageId": message_id}, room=room_channel(room_id))

	async def user_messages_deleted(self, room_id: str, user_id: str) -> None:
		await self._emit("userMessagesDeleted", {"roomId": room_id, "userId": user_id}, room=room_channel(room_id))

	async def room_access_changed(self, room_id: str, access_type: str) -> None:
		await self._emit("roomAccessChanged", {"roomId": room_id, "accessType": access_type})

	async def notify_user(self, user_id: str, event: str, payload: dict) -> None:
		await self._emit(event, payload, room=user_channel(user_id))
