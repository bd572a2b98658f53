"""Outbox helpers for chat-room events and push notifications."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from app.infra.redis import redis_client

ROOM_EVENT_STREAM = "x:chatrooms.events"
PUSH_STREAM = "x:push.events"


async def append_room_event(event: str, room_id: str, *, user_id: str | None = None, meta: Mapping[str, Any] | None = None) -> None:
	fields: dict[str, Any] = {
		"event": event,
		"room_id": room_id,
	}
	if user_id:
		fields["user_id"] = str(user_id)
	if meta:
		for key, value in meta.items():
			fields[f"meta_{key}"] = str(value)
	await redis_client.xadd_capped(ROOM_EVENT_STREAM, fields)


async def append_push_event(
	user_id: str,
	*,
	title: str,
	body: str,
	url: Optional[str] = None,
	kind: str = "chat",
) -> None:
	"""Queue a device push for delivery by the push worker."""
	fields: dict[str, Any] = {
		"user_id": str(user_id),
		"kind": kind,
		"title": title,
		"body": body,
	}
	if url:
		fields["url"] = url
	await redis_client.xadd_capped(PUSH_STREAM, fields)
