"""Sliding-window message counter used to auto-mute floods."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol, Tuple

import ulid

from app.infra.redis import redis_client
from app.settings import settings


Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class RateCheck:
	within_limit: bool
	count: int


class RateTracker(Protocol):
	async def record_and_check(self, room_id: str, user_id: str) -> RateCheck: ...

	async def sweep(self) -> int: ...


class MemoryRateTracker:
	"""Keeps send timestamps per (room, user) inside the current window.

	A send that would exceed the limit is not recorded, and the key's window is
	discarded so the user starts fresh once unmuted.
	"""

	def __init__(
		self,
		*,
		max_messages: int | None = None,
		window_seconds: float | None = None,
		clock: Clock = time.time,
	) -> None:
		self._max_messages = int(max_messages if max_messages is not None else settings.chat_rate_max_messages)
		self._window_seconds = float(window_seconds if window_seconds is not None else settings.chat_rate_window_seconds)
		self._clock = clock
		self._windows: Dict[Tuple[str, str], List[float]] = {}

	async def record_and_check(self, room_id: str, user_id: str) -> RateCheck:
		now = self._clock()
		key = (room_id, user_id)
		window = [stamp for stamp in self._windows.get(key, ()) if now - stamp < self._window_seconds]
		if len(window) >= self._max_messages:
			self._windows.pop(key, None)
			return RateCheck(within_limit=False, count=len(window) + 1)
		window.append(now)
		self._windows[key] = window
		return RateCheck(within_limit=True, count=len(window))

	async def sweep(self) -> int:
		now = self._clock()
		stale = [key for key, window in self._windows.items() if not window or now - window[-1] >= self._window_seconds]
		for key in stale:
			self._windows.pop(key, None)
		return len(stale)

	def __len__(self) -> int:
		return len(self._windows)


class RedisRateTracker:
	"""Sorted-set window per (room, user); scores are send timestamps."""

	def __init__(
		self,
		client=redis_client,
		*,
		max_messages: int | None = None,
		window_seconds: float | None = None,
		clock: Clock = time.time,
	) -> None:
		self._client = client
		self._max_messages = int(max_messages if max_messages is not None else settings.chat_rate_max_messages)
		self._window_seconds = float(window_seconds if window_seconds is not None else settings.chat_rate_window_seconds)
		self._clock = clock

	@staticmethod
	def _key(room_id: str, user_id: str) -> str:
		return f"chat:rate:{room_id}:{user_id}"

	async def record_and_check(self, room_id: str, user_id: str) -> RateCheck:
		now = self._clock()
		key = self._key(room_id, user_id)
		async with self._client.pipeline(transaction=True) as pipe:
			pipe.zremrangebyscore(key, "-inf", now - self._window_seconds)
			pipe.zcard(key)
			_, held = await pipe.execute()
		held = int(held)
		if held >= self._max_messages:
			await self._client.delete(key)
			return RateCheck(within_limit=False, count=held + 1)
		async with self._client.pipeline(transaction=True) as pipe:
			pipe.zadd(key, {f"{now}:{ulid.new()}": now})
			pipe.expire(key, int(self._window_seconds) + 1)
			await pipe.execute()
		return RateCheck(within_limit=True, count=held + 1)

	async def sweep(self) -> int:
		"""Trim expired stamps from every window; returns the number removed."""
		cutoff = self._clock() - self._window_seconds
		removed = 0
		async for key in self._client.scan_keys("chat:rate:*"):
			removed += int(await self._client.zremrangebyscore(key, "-inf", cutoff))
		return removed
