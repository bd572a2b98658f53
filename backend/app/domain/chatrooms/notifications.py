"""Notification records for chat mentions and membership changes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import asyncpg
import ulid

from app.domain.chatrooms import models, outbox, sanitize
from app.domain.chatrooms.fanout import DeliveryFanout
from app.infra.postgres import optional_pool
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.items: Dict[str, List[models.Notification]] = {}

	async def add(self, notification: models.Notification) -> models.Notification:
		async with self._lock:
			self.items.setdefault(notification.user_id, []).append(notification)
			return notification

	async def list_for_user(self, user_id: str) -> List[models.Notification]:
		async with self._lock:
			return list(reversed(self.items.get(user_id, [])))


_MEMORY = _MemoryStore()


def _row_to_notification(row: asyncpg.Record) -> models.Notification:
	return models.Notification(
		id=str(row["id"]),
		user_id=str(row["user_id"]),
		sender_id=str(row["sender_id"]) if row["sender_id"] else None,
		type=row["type"],
		title=row["title"],
		content=row["content"],
		reference_id=row["reference_id"],
		is_read=bool(row["is_read"]),
		created_at=row["created_at"],
	)


class NotificationRepository:
	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		pool = await optional_pool()
		self._pool_instance = pool
		return pool

	async def create(self, notification: models.Notification) -> models.Notification:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.add(notification)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO notifications (id, user_id, sender_id, type, title, content, reference_id, is_read, created_at)
				VALUES ($1,$2,$3,$4,$5,$6,$7,FALSE,$8)
				""",
				notification.id,
				notification.user_id,
				notification.sender_id,
				notification.type,
				notification.title,
				notification.content,
				notification.reference_id,
				notification.created_at,
			)
		return notification

	async def list_for_user(self, user_id: str, *, limit: int = 50) -> List[models.Notification]:
		pool = await self._get_pool()
		if pool is None:
			return (await _MEMORY.list_for_user(user_id))[:limit]
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM notifications WHERE user_id=$1 ORDER BY created_at DESC LIMIT $2",
				user_id,
				limit,
			)
			return [_row_to_notification(row) for row in rows]


class NotificationService:
	"""Persists a notification, then pushes it in real time and to devices.

	Only the record is required; the socket event and the push hand-off are
	best-effort.
	"""

	def __init__(
		self,
		*,
		repository: NotificationRepository | None = None,
		fanout: DeliveryFanout | None = None,
	) -> None:
		self._repo = repository or NotificationRepository()
		self._fanout = fanout or DeliveryFanout()

	async def notify(
		self,
		*,
		user_id: str,
		sender_id: Optional[str],
		kind: str,
		title: str,
		content: str,
		reference_id: Optional[str] = None,
	) -> models.Notification:
		notification = models.Notification(
			id=str(ulid.new()),
			user_id=user_id,
			sender_id=sender_id,
			type=kind,
			title=title,
			content=content,
			reference_id=reference_id,
			created_at=datetime.now(timezone.utc),
		)
		await self._repo.create(notification)
		obs_metrics.inc_notification(kind)
		await self._fanout.notify_user(user_id, "notification", notification.to_payload())
		try:
			await outbox.append_push_event(
				user_id,
				title=title,
				body=sanitize.sanitize_plain_text(content),
				url=f"/chat/{reference_id}" if reference_id else None,
				kind=kind,
			)
		except Exception:
			obs_metrics.chat_side_effect_failed("push")
			logger.warning("push hand-off failed", exc_info=True, extra={"target_user_id": user_id, "kind": kind})
		return notification


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory notifications."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.items.clear()
