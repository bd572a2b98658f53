"""Persistence for chat rooms, memberships and messages.

Postgres via asyncpg when a pool is available, otherwise a process-local store
that backs development and tests.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import asyncpg
import ulid

from app.domain.chatrooms import models, policy
from app.infra.postgres import optional_pool


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rooms: Dict[str, models.ChatRoom] = {}
		self.members: Dict[str, Dict[str, models.RoomMember]] = {}
		self.messages: Dict[str, List[models.ChatMessage]] = {}

	def _with_counts(self, room: models.ChatRoom) -> models.ChatRoom:
		return replace(
			room,
			members_count=len(self.members.get(room.id, {})),
			messages_count=len(self.messages.get(room.id, [])),
		)

	async def create_room(self, room: models.ChatRoom) -> models.ChatRoom:
		async with self._lock:
			self.rooms[room.id] = room
			self.members.setdefault(room.id, {})
			self.messages.setdefault(room.id, [])
			return self._with_counts(room)

	async def get_room(self, room_id: str) -> Optional[models.ChatRoom]:
		async with self._lock:
			room = self.rooms.get(room_id)
			return self._with_counts(room) if room else None

	async def list_active_rooms(self) -> List[models.ChatRoom]:
		async with self._lock:
			rooms = [self._with_counts(room) for room in self.rooms.values() if room.is_active]
			return sorted(rooms, key=lambda room: room.created_at, reverse=True)

	async def update_room(self, room: models.ChatRoom) -> None:
		async with self._lock:
			self.rooms[room.id] = room

	async def deactivate_room(self, room_id: str) -> bool:
		async with self._lock:
			room = self.rooms.get(room_id)
			if room is None or not room.is_active:
				return False
			room.is_active = False
			room.updated_at = datetime.now(timezone.utc)
			self.members.pop(room_id, None)
			self.messages.pop(room_id, None)
			return True

	async def get_member(self, room_id: str, user_id: str) -> Optional[models.RoomMember]:
		async with self._lock:
			return self.members.get(room_id, {}).get(user_id)

	async def add_member(self, member: models.RoomMember) -> models.RoomMember:
		async with self._lock:
			members = self.members.setdefault(member.room_id, {})
			if member.user_id in members:
				raise policy.DuplicateMember()
			members[member.user_id] = member
			return member

	async def remove_member(self, room_id: str, user_id: str) -> bool:
		async with self._lock:
			return self.members.get(room_id, {}).pop(user_id, None) is not None

	async def set_muted(self, room_id: str, user_id: str, muted: bool) -> Optional[models.RoomMember]:
		async with self._lock:
			member = self.members.get(room_id, {}).get(user_id)
			if member is None:
				return None
			member.is_muted = muted
			return member

	async def list_members(self, room_id: str) -> List[models.RoomMember]:
		async with self._lock:
			return sorted(self.members.get(room_id, {}).values(), key=lambda member: member.joined_at)

	async def list_room_ids_for_user(self, user_id: str) -> List[str]:
		async with self._lock:
			return [room_id for room_id, members in self.members.items() if user_id in members]

	async def insert_message(self, message: models.ChatMessage) -> models.ChatMessage:
		async with self._lock:
			self.messages.setdefault(message.room_id, []).append(message)
			return message

	async def get_message(self, message_id: str) -> Optional[models.ChatMessage]:
		async with self._lock:
			for messages in self.messages.values():
				for message in messages:
					if message.id == message_id:
						return message
			return None

	async def delete_message(self, message_id: str) -> bool:
		async with self._lock:
			for messages in self.messages.values():
				for index, message in enumerate(messages):
					if message.id == message_id:
						del messages[index]
						return True
			return False

	async def delete_user_messages(self, room_id: str, user_id: str) -> int:
		async with self._lock:
			messages = self.messages.get(room_id, [])
			kept = [message for message in messages if message.user_id != user_id]
			self.messages[room_id] = kept
			return len(messages) - len(kept)

	async def fetch_messages(self, room_id: str, *, offset: int, limit: int) -> Tuple[List[models.ChatMessage], int]:
		async with self._lock:
			ordered = sorted(self.messages.get(room_id, []), key=lambda message: (message.created_at, message.id), reverse=True)
			page = ordered[offset : offset + limit]
			page.reverse()
			return page, len(ordered)


_MEMORY = _MemoryStore()


def _row_to_room(row: asyncpg.Record) -> models.ChatRoom:
	return models.ChatRoom(
		id=str(row["id"]),
		name=row["name"],
		description=row["description"] or "",
		created_by=str(row["created_by"]),
		access_type=row["access_type"],
		is_active=bool(row["is_active"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
		members_count=int(row.get("members_count", 0) or 0),
		messages_count=int(row.get("messages_count", 0) or 0),
	)


def _row_to_member(row: asyncpg.Record) -> models.RoomMember:
	return models.RoomMember(
		room_id=str(row["room_id"]),
		user_id=str(row["user_id"]),
		is_muted=bool(row["is_muted"]),
		joined_at=row["joined_at"],
	)


def _row_to_message(row: asyncpg.Record) -> models.ChatMessage:
	preview: Any = row["link_preview"]
	if isinstance(preview, str):
		preview = json.loads(preview)
	return models.ChatMessage(
		id=str(row["id"]),
		room_id=str(row["room_id"]),
		user_id=str(row["user_id"]),
		content=row["content"],
		created_at=row["created_at"],
		link_preview=preview,
	)


_ROOM_WITH_COUNTS = """
	SELECT r.*,
		(SELECT COUNT(*) FROM chat_room_members m WHERE m.room_id = r.id) AS members_count,
		(SELECT COUNT(*) FROM chat_messages c WHERE c.room_id = r.id) AS messages_count
	FROM chat_rooms r
"""


class RoomRepository:
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

	async def create_room(
		self,
		*,
		name: str,
		description: str,
		created_by: str,
		access_type: models.AccessType,
	) -> models.ChatRoom:
		now = datetime.now(timezone.utc)
		room = models.ChatRoom(
			id=str(ulid.new()),
			name=name,
			description=description,
			created_by=created_by,
			access_type=access_type,
			is_active=True,
			created_at=now,
			updated_at=now,
		)
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.create_room(room)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO chat_rooms (id, name, description, created_by, access_type, is_active, created_at, updated_at)
				VALUES ($1,$2,$3,$4,$5,TRUE,$6,$6)
				""",
				room.id,
				name,
				description,
				created_by,
				access_type,
				now,
			)
		return room

	async def get_room(self, room_id: str) -> Optional[models.ChatRoom]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_room(room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(_ROOM_WITH_COUNTS + " WHERE r.id = $1", room_id)
			return _row_to_room(row) if row else None

	async def list_active_rooms(self) -> List[models.ChatRoom]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_active_rooms()
		async with pool.acquire() as conn:
			rows = await conn.fetch(_ROOM_WITH_COUNTS + " WHERE r.is_active ORDER BY r.created_at DESC")
			return [_row_to_room(row) for row in rows]

	async def update_room(self, room: models.ChatRoom) -> models.ChatRoom:
		room.updated_at = datetime.now(timezone.utc)
		pool = await self._get_pool()
		if pool is None:
			await _MEMORY.update_room(room)
			return room
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				UPDATE chat_rooms
				SET name=$2, description=$3, access_type=$4, updated_at=$5
				WHERE id=$1
				""",
				room.id,
				room.name,
				room.description,
				room.access_type,
				room.updated_at,
			)
		return room

	async def deactivate_room(self, room_id: str) -> bool:
		"""Soft-delete the room and drop its members and messages."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.deactivate_room(room_id)
		async with pool.acquire() as conn:
			async with conn.transaction():
				result = await conn.execute(
					"UPDATE chat_rooms SET is_active = FALSE, updated_at = NOW() WHERE id=$1 AND is_active",
					room_id,
				)
				if result.endswith(" 0"):
					return False
				await conn.execute("DELETE FROM chat_messages WHERE room_id=$1", room_id)
				await conn.execute("DELETE FROM chat_room_members WHERE room_id=$1", room_id)
		return True

	async def get_member(self, room_id: str, user_id: str) -> Optional[models.RoomMember]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_member(room_id, user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT * FROM chat_room_members WHERE room_id=$1 AND user_id=$2",
				room_id,
				user_id,
			)
			return _row_to_member(row) if row else None

	async def add_member(self, room_id: str, user_id: str) -> models.RoomMember:
		"""Insert a membership; raises DuplicateMember if one already exists."""
		member = models.RoomMember(
			room_id=room_id,
			user_id=user_id,
			is_muted=False,
			joined_at=datetime.now(timezone.utc),
		)
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.add_member(member)
		async with pool.acquire() as conn:
			try:
				await conn.execute(
					"""
					INSERT INTO chat_room_members (room_id, user_id, is_muted, joined_at)
					VALUES ($1,$2,FALSE,$3)
					""",
					room_id,
					user_id,
					member.joined_at,
				)
			except asyncpg.UniqueViolationError as exc:
				raise policy.DuplicateMember() from exc
		return member

	async def remove_member(self, room_id: str, user_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.remove_member(room_id, user_id)
		async with pool.acquire() as conn:
			result = await conn.execute(
				"DELETE FROM chat_room_members WHERE room_id=$1 AND user_id=$2",
				room_id,
				user_id,
			)
			return not result.endswith(" 0")

	async def set_muted(self, room_id: str, user_id: str, muted: bool) -> Optional[models.RoomMember]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.set_muted(room_id, user_id, muted)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				UPDATE chat_room_members SET is_muted=$3
				WHERE room_id=$1 AND user_id=$2
				RETURNING *
				""",
				room_id,
				user_id,
				muted,
			)
			return _row_to_member(row) if row else None

	async def list_members(self, room_id: str) -> List[models.RoomMember]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_members(room_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM chat_room_members WHERE room_id=$1 ORDER BY joined_at",
				room_id,
			)
			return [_row_to_member(row) for row in rows]

	async def list_room_ids_for_user(self, user_id: str) -> List[str]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_room_ids_for_user(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch("SELECT room_id FROM chat_room_members WHERE user_id=$1", user_id)
			return [str(row["room_id"]) for row in rows]


class MessageRepository:
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

	async def insert_message(
		self,
		*,
		room_id: str,
		user_id: str,
		content: str,
		link_preview: Optional[Dict[str, Any]] = None,
	) -> models.ChatMessage:
		message = models.ChatMessage(
			id=str(ulid.new()),
			room_id=room_id,
			user_id=user_id,
			content=content,
			created_at=datetime.now(timezone.utc),
			link_preview=link_preview,
		)
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.insert_message(message)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO chat_messages (id, room_id, user_id, content, link_preview, created_at)
				VALUES ($1,$2,$3,$4,$5::jsonb,$6)
				""",
				message.id,
				room_id,
				user_id,
				content,
				json.dumps(link_preview) if link_preview is not None else None,
				message.created_at,
			)
		return message

	async def get_message(self, message_id: str) -> Optional[models.ChatMessage]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_message(message_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM chat_messages WHERE id=$1", message_id)
			return _row_to_message(row) if row else None

	async def delete_message(self, message_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_message(message_id)
		async with pool.acquire() as conn:
			result = await conn.execute("DELETE FROM chat_messages WHERE id=$1", message_id)
			return not result.endswith(" 0")

	async def delete_user_messages(self, room_id: str, user_id: str) -> int:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_user_messages(room_id, user_id)
		async with pool.acquire() as conn:
			result = await conn.execute(
				"DELETE FROM chat_messages WHERE room_id=$1 AND user_id=$2",
				room_id,
				user_id,
			)
			return int(result.rsplit(" ", 1)[-1])

	async def fetch_messages(self, room_id: str, *, offset: int, limit: int) -> Tuple[List[models.ChatMessage], int]:
		"""Return one page of history (oldest first within the page) and the total count.

		Pages count backwards from the newest message.
		"""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.fetch_messages(room_id, offset=offset, limit=limit)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM chat_messages
				WHERE room_id=$1
				ORDER BY created_at DESC, id DESC
				LIMIT $2 OFFSET $3
				""",
				room_id,
				limit,
				offset,
			)
			total = await conn.fetchval("SELECT COUNT(*) FROM chat_messages WHERE room_id=$1", room_id)
		messages = [_row_to_message(row) for row in rows]
		messages.reverse()
		return messages, int(total or 0)


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.rooms.clear()
		_MEMORY.members.clear()
		_MEMORY.messages.clear()
