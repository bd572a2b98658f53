"""AsyncPG pool shared by the chat repositories."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import asyncpg

from app.settings import settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		# Force 127.0.0.1 instead of localhost to avoid IPv6 resolution stalls
		dsn = settings.postgres_url.replace("localhost", "127.0.0.1")
		_pool = await asyncpg.create_pool(
			dsn=dsn,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			ssl="require" if settings.postgres_ssl else "disable",
		)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def optional_pool() -> Optional[asyncpg.pool.Pool]:
	"""Pool for repositories that fall back to in-memory stores when Postgres is absent."""
	try:
		return await get_pool()
	except Exception as exc:
		logger.warning("postgres unavailable, chat repositories use memory stores", extra={"error": repr(exc)})
		return None


async def ping(timeout: float = 0.3) -> float:
	"""Run `SELECT 1` and return the round-trip latency in seconds."""
	pool = await get_pool()
	start = time.perf_counter()
	async with pool.acquire() as conn:
		await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
	return time.perf_counter() - start


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None
