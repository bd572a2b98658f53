"""Short-lived record of recent kicks per room and user.

A kick blocks the user from joining or sending to the room for
`chat_kick_block_seconds`. Expired entries are evicted lazily on lookup and by
the periodic state sweeper.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Protocol

from app.infra.redis import redis_client
from app.settings import settings


Clock = Callable[[], float]


class KickLedger(Protocol):
	async def record(self, room_id: str, user_id: str) -> None: ...

	async def is_blocked(self, room_id: str, user_id: str) -> bool: ...

	async def clear(self, room_id: str, user_id: str) -> None: ...

	async def sweep(self) -> int: ...


class MemoryKickLedger:
	"""In-process ledger keyed room -> user -> kicked-at timestamp.

	No method awaits, so each call runs atomically on the event loop.
	"""

	def __init__(self, *, block_seconds: float | None = None, clock: Clock = time.time) -> None:
		self._block_seconds = float(block_seconds if block_seconds is not None else settings.chat_kick_block_seconds)
		self._clock = clock
		self._kicks: Dict[str, Dict[str, float]] = {}

	async def record(self, room_id: str, user_id: str) -> None:
		self._kicks.setdefault(room_id, {})[user_id] = self._clock()

	async def is_blocked(self, room_id: str, user_id: str) -> bool:
		room_kicks = self._kicks.get(room_id)
		if not room_kicks:
			return False
		kicked_at = room_kicks.get(user_id)
		if kicked_at is None:
			return False
		if self._clock() - kicked_at < self._block_seconds:
			return True
		self._evict(room_id, user_id)
		return False

	async def clear(self, room_id: str, user_id: str) -> None:
		self._evict(room_id, user_id)

	async def sweep(self) -> int:
		now = self._clock()
		removed = 0
		for room_id in list(self._kicks):
			for user_id, kicked_at in list(self._kicks.get(room_id, {}).items()):
				if now - kicked_at >= self._block_seconds:
					self._evict(room_id, user_id)
					removed += 1
		return removed

	def _evict(self, room_id: str, user_id: str) -> None:
		room_kicks = self._kicks.get(room_id)
		if room_kicks is None:
			return
		room_kicks.pop(user_id, None)
		if not room_kicks:
			self._kicks.pop(room_id, None)

	def __len__(self) -> int:
		return sum(len(users) for users in self._kicks.values())


class RedisKickLedger:
	"""Ledger shared across workers; Redis key expiry replaces the sweep."""

	def __init__(self, client=redis_client, *, block_seconds: float | None = None, clock: Clock = time.time) -> None:
		self._client = client
		self._block_seconds = int(block_seconds if block_seconds is not None else settings.chat_kick_block_seconds)
		self._clock = clock

	@staticmethod
	def _key(room_id: str, user_id: str) -> str:
		return f"chat:kick:{room_id}:{user_id}"

	async def record(self, room_id: str, user_id: str) -> None:
		await self._client.set(self._key(room_id, user_id), str(self._clock()), ex=self._block_seconds)

	async def is_blocked(self, room_id: str, user_id: str) -> bool:
		return bool(await self._client.exists(self._key(room_id, user_id)))

	async def clear(self, room_id: str, user_id: str) -> None:
		await self._client.delete(self._key(room_id, user_id))

	async def sweep(self) -> int:
		return 0
