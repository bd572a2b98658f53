"""Chat room lifecycle and administration."""

from __future__ import annotations

import logging

from app.domain.chatrooms import outbox, policy, sanitize, schemas
from app.domain.chatrooms.fanout import DeliveryFanout
from app.domain.chatrooms.gatekeeper import Gatekeeper
from app.domain.chatrooms.notifications import NotificationService
from app.domain.chatrooms.repository import RoomRepository
from app.domain.chatrooms.users import UserRepository
from app.infra.auth import AuthenticatedUser

logger = logging.getLogger(__name__)


async def is_admin(users: UserRepository, auth_user: AuthenticatedUser) -> bool:
	"""Token roles first, then the role stored on the user record."""
	if auth_user.is_admin():
		return True
	record = await users.get_user(auth_user.id)
	return bool(record and record.is_admin())


class RoomService:
	def __init__(
		self,
		*,
		repository: RoomRepository | None = None,
		users: UserRepository | None = None,
		fanout: DeliveryFanout | None = None,
		gatekeeper: Gatekeeper | None = None,
		notifications: NotificationService | None = None,
	) -> None:
		self._repo = repository or RoomRepository()
		self._users = users or UserRepository()
		self._fanout = fanout or DeliveryFanout()
		self._notifications = notifications or NotificationService(fanout=self._fanout)
		self._gatekeeper = gatekeeper or Gatekeeper(
			rooms=self._repo,
			users=self._users,
			fanout=self._fanout,
			notifications=self._notifications,
		)

	async def list_rooms(self, auth_user: AuthenticatedUser) -> schemas.RoomListResponse:
		rooms = await self._repo.list_active_rooms()
		joined = set(await self._repo.list_room_ids_for_user(auth_user.id))
		creators = await self._users.get_users(room.created_by for room in rooms)
		summaries = [
			schemas.RoomSummary(
				id=room.id,
				name=room.name,
				description=room.description,
				created_by=room.created_by,
				creator_name=creators[room.created_by].display_name if room.created_by in creators else None,
				member_count=room.members_count,
				message_count=room.messages_count,
				access_type=room.access_type,
				created_at=room.created_at,
				is_joined=room.id in joined,
			)
			for room in rooms
		]
		return schemas.RoomListResponse(rooms=summaries)

	async def create_room(self, auth_user: AuthenticatedUser, payload: schemas.RoomCreateRequest) -> schemas.RoomCreatedResponse:
		room = await self._repo.create_room(
			name=sanitize.sanitize_plain_text(payload.name.strip()),
			description=sanitize.sanitize_plain_text(payload.description.strip()),
			created_by=auth_user.id,
			access_type=policy.normalise_access_type(payload.access_type),
		)
		await outbox.append_room_event("room_created", room.id, user_id=auth_user.id, meta={"access_type": room.access_type})
		logger.info("chat room created", extra={"room_id": room.id, "access_type": room.access_type})
		return schemas.RoomCreatedResponse(message="Chat room created", room_id=room.id)

	async def update_settings(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		payload: schemas.RoomSettingsRequest,
	) -> schemas.StatusResponse:
		room = policy.ensure_room(await self._repo.get_room(room_id))
		if payload.name:
			room.name = sanitize.sanitize_plain_text(payload.name.strip())
		if payload.description is not None:
			room.description = sanitize.sanitize_plain_text(payload.description.strip())
		access_changed = payload.access_type is not None and payload.access_type != room.access_type
		if payload.access_type is not None:
			room.access_type = policy.normalise_access_type(payload.access_type)
		await self._repo.update_room(room)
		if access_changed:
			await self._fanout.room_access_changed(room.id, room.access_type)
		await outbox.append_room_event("room_updated", room.id, user_id=auth_user.id, meta={"access_type": room.access_type})
		return schemas.StatusResponse(message="Room settings updated")

	async def join_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.StatusResponse:
		admin = await is_admin(self._users, auth_user)
		await self._gatekeeper.authorize_join(room_id, auth_user.id, is_admin=admin)
		if await self._repo.get_member(room_id, auth_user.id) is not None:
			raise policy.DuplicateMember()
		await self._repo.add_member(room_id, auth_user.id)
		await outbox.append_room_event("member_joined", room_id, user_id=auth_user.id)
		return schemas.StatusResponse(message="Joined chat room")

	async def leave_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.StatusResponse:
		if await self._repo.remove_member(room_id, auth_user.id):
			await self._fanout.evict_user(room_id, auth_user.id)
			await outbox.append_room_event("member_left", room_id, user_id=auth_user.id)
		return schemas.StatusResponse(message="Left chat room")

	async def add_member(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		payload: schemas.MemberTargetRequest,
	) -> schemas.StatusResponse:
		room = policy.ensure_room(await self._repo.get_room(room_id))
		target = await self._users.get_user(payload.user_id)
		if target is None or not target.is_active:
			raise policy.RoomPolicyError("user_not_found", status_code=404, message="User not found.")
		if await self._repo.get_member(room.id, target.id) is not None:
			raise policy.DuplicateMember()
		await self._repo.add_member(room.id, target.id)
		await self._gatekeeper.clear_kick(room.id, target.id)
		await self._notifications.notify(
			user_id=target.id,
			sender_id=auth_user.id,
			kind="chat",
			title=f"You've been added to {room.name}",
			content=f'An admin added you to the chat room "{room.name}".',
			reference_id=room.id,
		)
		await self._fanout.member_list_updated(room.id)
		await outbox.append_room_event("member_added", room.id, user_id=target.id, meta={"actor_id": auth_user.id})
		return schemas.StatusResponse(message="Member added successfully")

	async def kick_member(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		payload: schemas.MemberTargetRequest,
	) -> schemas.StatusResponse:
		policy.ensure_not_self(auth_user.id, payload.user_id)
		await self._gatekeeper.record_kick(room_id, payload.user_id)
		await outbox.append_room_event("member_kicked", room_id, user_id=payload.user_id, meta={"actor_id": auth_user.id})
		return schemas.StatusResponse(message="Member kicked from room")

	async def toggle_mute(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		payload: schemas.MemberTargetRequest,
	) -> schemas.MuteResponse:
		member = policy.ensure_member(await self._repo.get_member(room_id, payload.user_id))
		updated = policy.ensure_member(await self._repo.set_muted(room_id, payload.user_id, not member.is_muted))
		await self._fanout.member_list_updated(room_id)
		await outbox.append_room_event(
			"member_muted" if updated.is_muted else "member_unmuted",
			room_id,
			user_id=payload.user_id,
			meta={"actor_id": auth_user.id},
		)
		return schemas.MuteResponse(
			message="Member muted" if updated.is_muted else "Member unmuted",
			is_muted=updated.is_muted,
		)

	async def deactivate_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.StatusResponse:
		if not await self._repo.deactivate_room(room_id):
			raise policy.RoomPolicyError("room_not_found", status_code=404, message="Chat room not found.")
		await outbox.append_room_event("room_deactivated", room_id, user_id=auth_user.id)
		logger.info("chat room deactivated", extra={"room_id": room_id})
		return schemas.StatusResponse(message="Chat room deactivated and cleaned up")

