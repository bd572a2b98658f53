"""Redis connection management.

`redis_client` is a stable proxy: modules keep the imported reference while the
underlying client is swapped at runtime (fakeredis in tests).
"""

from __future__ import annotations

from typing import AsyncIterator

import redis.asyncio as redis

from app.settings import settings


class RedisProxy:
	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	async def xadd_capped(self, name: str, fields: dict, *, maxlen: int = 10_000):
		"""Append to a stream, trimming approximately to keep it bounded."""
		return await self._client.xadd(name, fields, maxlen=maxlen, approximate=True)

	async def scan_keys(self, pattern: str, *, batch: int = 100) -> AsyncIterator[str]:
		"""Yield keys matching the pattern without blocking the server like KEYS would."""
		cursor = 0
		while True:
			cursor, keys = await self._client.scan(cursor=cursor, match=pattern, count=batch)
			for key in keys:
				yield key
			if cursor == 0:
				break

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
