"""Chat room message history, sending and moderation deletes."""

from __future__ import annotations

import math
from typing import Dict, Iterable, List

from app.domain.chatrooms import models, outbox, policy, schemas
from app.domain.chatrooms.fanout import DeliveryFanout
from app.domain.chatrooms.gatekeeper import Gatekeeper
from app.domain.chatrooms.repository import MessageRepository, RoomRepository
from app.domain.chatrooms.service import is_admin
from app.domain.chatrooms.users import UserRepository
from app.infra.auth import AuthenticatedUser


def _member_dtos(members: Iterable[models.RoomMember], users: Dict[str, models.ChatUser]) -> List[schemas.RoomMemberDTO]:
	result: List[schemas.RoomMemberDTO] = []
	for member in members:
		user = users.get(member.user_id)
		result.append(
			schemas.RoomMemberDTO(
				id=member.user_id,
				username=user.username if user else "Unknown",
				display_name=user.display_name if user else "Deleted User",
				avatar_url=(user.avatar_url or "") if user else "",
				is_muted=member.is_muted,
			)
		)
	return result


class RoomChatService:
	def __init__(
		self,
		*,
		rooms: RoomRepository | None = None,
		messages: MessageRepository | None = None,
		users: UserRepository | None = None,
		fanout: DeliveryFanout | None = None,
		gatekeeper: Gatekeeper | None = None,
	) -> None:
		self._rooms = rooms or RoomRepository()
		self._messages = messages or MessageRepository()
		self._users = users or UserRepository()
		self._fanout = fanout or DeliveryFanout()
		self._gatekeeper = gatekeeper or Gatekeeper(
			rooms=self._rooms,
			messages=self._messages,
			users=self._users,
			fanout=self._fanout,
		)

	async def history(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		*,
		page: int,
		limit: int,
	) -> schemas.RoomHistoryResponse:
		room = policy.ensure_room(await self._rooms.get_room(room_id))
		membership = await self._rooms.get_member(room_id, auth_user.id)
		if membership is None and not await is_admin(self._users, auth_user):
			raise policy.RoomPolicyError(
				"not_member",
				status_code=403,
				message="You must join this room to see messages.",
			)
		page = max(1, page)
		limit = max(1, min(limit, 100))
		messages, total = await self._messages.fetch_messages(room_id, offset=(page - 1) * limit, limit=limit)
		members = await self._rooms.list_members(room_id)
		users = await self._users.get_users(
			[message.user_id for message in messages] + [member.user_id for member in members] + [room.created_by]
		)
		creator = users.get(room.created_by)
		return schemas.RoomHistoryResponse(
			room=schemas.RoomInfo(
				id=room.id,
				name=room.name,
				description=room.description,
				created_by=room.created_by,
				creator_name=creator.display_name if creator else None,
				access_type=room.access_type,
				created_at=room.created_at,
			),
			messages=[
				schemas.ChatMessageDTO.model_validate(message.to_payload(users.get(message.user_id)))
				for message in messages
			],
			members=_member_dtos(members, users),
			is_muted=bool(membership and membership.is_muted),
			pagination=schemas.Pagination(
				page=page,
				limit=limit,
				total=total,
				total_pages=math.ceil(total / limit),
			),
		)

	async def send_message(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		payload: schemas.MessageSendRequest,
	) -> schemas.SendMessageResponse:
		posted = await self._gatekeeper.authorize_and_record_send(
			room_id,
			auth_user.id,
			payload.content,
			is_admin=auth_user.is_admin(),
			transport="http",
		)
		if posted is None:
			return schemas.SendMessageResponse(message=None)
		return schemas.SendMessageResponse(message=schemas.ChatMessageDTO.model_validate(posted.to_payload()))

	async def delete_message(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		message_id: str,
	) -> schemas.StatusResponse:
		message = await self._messages.get_message(message_id)
		if message is None:
			raise policy.RoomPolicyError("message_not_found", status_code=404, message="Message not found.")
		if message.room_id != room_id:
			raise policy.RoomPolicyError(
				"message_room_mismatch",
				status_code=400,
				message="Message does not belong to this room.",
			)
		if message.user_id != auth_user.id and not await is_admin(self._users, auth_user):
			raise policy.RoomPolicyError("forbidden", status_code=403, message="Not authorized to delete this message.")
		await self._messages.delete_message(message_id)
		await self._fanout.message_deleted(room_id, message_id)
		await outbox.append_room_event("message_deleted", room_id, user_id=auth_user.id, meta={"message_id": message_id})
		return schemas.StatusResponse(message="Message deleted")

	async def delete_user_messages(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		user_id: str,
	) -> schemas.StatusResponse:
		deleted = await self._messages.delete_user_messages(room_id, user_id)
		if deleted > 0:
			await self._fanout.user_messages_deleted(room_id, user_id)
			await outbox.append_room_event(
				"user_messages_deleted",
				room_id,
				user_id=user_id,
				meta={"actor_id": auth_user.id, "count": deleted},
			)
		return schemas.StatusResponse(message=f"Deleted {deleted} messages")
