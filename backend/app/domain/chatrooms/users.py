"""Read access to the user directory for chat authorisation and mentions."""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Optional

import asyncpg

from app.domain.chatrooms import models
from app.infra.postgres import optional_pool


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.users: Dict[str, models.ChatUser] = {}

	async def upsert(self, user: models.ChatUser) -> models.ChatUser:
		async with self._lock:
			self.users[user.id] = user
			return user

	async def get(self, user_id: str) -> Optional[models.ChatUser]:
		async with self._lock:
			return self.users.get(user_id)

	async def find_by_username(self, username: str) -> Optional[models.ChatUser]:
		needle = username.lower()
		async with self._lock:
			for user in self.users.values():
				if user.username.lower() == needle:
					return user
			return None


_MEMORY = _MemoryStore()


def _row_to_user(row: asyncpg.Record) -> models.ChatUser:
	return models.ChatUser(
		id=str(row["id"]),
		username=row["username"],
		display_name=row["display_name"] or row["username"],
		avatar_url=row["avatar_url"],
		role=row["role"] or "user",
		is_active=bool(row["is_active"]),
	)


class UserRepository:
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

	async def get_user(self, user_id: str) -> Optional[models.ChatUser]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get(user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT id, username, display_name, avatar_url, role, is_active FROM users WHERE id=$1",
				user_id,
			)
			return _row_to_user(row) if row else None

	async def get_users(self, user_ids: Iterable[str]) -> Dict[str, models.ChatUser]:
		ids = sorted(set(user_ids))
		if not ids:
			return {}
		pool = await self._get_pool()
		if pool is None:
			found: Dict[str, models.ChatUser] = {}
			for user_id in ids:
				user = await _MEMORY.get(user_id)
				if user is not None:
					found[user_id] = user
			return found
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT id, username, display_name, avatar_url, role, is_active FROM users WHERE id = ANY($1::text[])",
				ids,
			)
			return {str(row["id"]): _row_to_user(row) for row in rows}

	async def find_by_username(self, username: str) -> Optional[models.ChatUser]:
		"""Case-insensitive lookup used to resolve @mentions."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.find_by_username(username)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT id, username, display_name, avatar_url, role, is_active
				FROM users
				WHERE LOWER(username) = LOWER($1)
				""",
				username,
			)
			return _row_to_user(row) if row else None

	async def upsert_user(self, user: models.ChatUser) -> models.ChatUser:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.upsert(user)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO users (id, username, display_name, avatar_url, role, is_active)
				VALUES ($1,$2,$3,$4,$5,$6)
				ON CONFLICT (id) DO UPDATE SET
					username = EXCLUDED.username,
					display_name = EXCLUDED.display_name,
					avatar_url = EXCLUDED.avatar_url,
					role = EXCLUDED.role,
					is_active = EXCLUDED.is_active
				""",
				user.id,
				user.username,
				user.display_name,
				user.avatar_url,
				user.role,
				user.is_active,
			)
		return user


async def reset_memory_state() -> None:
	"""Test helper to clear the in-memory user directory."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.users.clear()
