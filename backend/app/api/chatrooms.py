"""FastAPI routes for chat rooms.

Policy failures raise `RoomPolicyError` (gatekeeper rejections included) and are
rendered by the handler installed in `app.api.errors`.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.domain.chatrooms import RoomChatService, RoomService, schemas
from app.domain.chatrooms.service import is_admin
from app.domain.chatrooms.users import UserRepository
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/chatrooms", tags=["chatrooms"])

_room_service = RoomService()
_chat_service = RoomChatService()
_users = UserRepository()


async def get_admin_user(auth_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
	"""Admin by token role or by the role stored on the user record."""
	if await is_admin(_users, auth_user):
		return auth_user
	raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient_role")


@router.get("", response_model=schemas.RoomListResponse)
async def list_rooms_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomListResponse:
	return await _room_service.list_rooms(auth_user)


@router.post("", response_model=schemas.RoomCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_room_endpoint(
	payload: schemas.RoomCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.RoomCreatedResponse:
	return await _room_service.create_room(auth_user, payload)


@router.put("/{room_id}/settings", response_model=schemas.StatusResponse)
async def update_settings_endpoint(
	room_id: str,
	payload: schemas.RoomSettingsRequest,
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.StatusResponse:
	return await _room_service.update_settings(auth_user, room_id, payload)


@router.post("/{room_id}/join", response_model=schemas.StatusResponse)
async def join_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.StatusResponse:
	return await _room_service.join_room(auth_user, room_id)


@router.post("/{room_id}/leave", response_model=schemas.StatusResponse)
async def leave_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.StatusResponse:
	return await _room_service.leave_room(auth_user, room_id)


@router.post("/{room_id}/add-member", response_model=schemas.StatusResponse)
async def add_member_endpoint(
	room_id: str,
	payload: schemas.MemberTargetRequest,
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.StatusResponse:
	return await _room_service.add_member(auth_user, room_id, payload)


@router.post("/{room_id}/kick", response_model=schemas.StatusResponse)
async def kick_member_endpoint(
	room_id: str,
	payload: schemas.MemberTargetRequest,
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.StatusResponse:
	return await _room_service.kick_member(auth_user, room_id, payload)


@router.post("/{room_id}/mute", response_model=schemas.MuteResponse)
async def toggle_mute_endpoint(
	room_id: str,
	payload: schemas.MemberTargetRequest,
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.MuteResponse:
	return await _room_service.toggle_mute(auth_user, room_id, payload)


@router.get("/{room_id}/messages", response_model=schemas.RoomHistoryResponse)
async def history_endpoint(
	room_id: str,
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=50, ge=1, le=100),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomHistoryResponse:
	return await _chat_service.history(auth_user, room_id, page=page, limit=limit)


@router.post("/{room_id}/messages", response_model=schemas.SendMessageResponse)
async def send_message_endpoint(
	room_id: str,
	payload: schemas.MessageSendRequest,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.SendMessageResponse:
	result = await _chat_service.send_message(auth_user, room_id, payload)
	response.status_code = status.HTTP_201_CREATED if result.message is not None else status.HTTP_200_OK
	return result


@router.delete("/{room_id}/messages/{message_id}", response_model=schemas.StatusResponse)
async def delete_message_endpoint(
	room_id: str,
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.StatusResponse:
	return await _chat_service.delete_message(auth_user, room_id, message_id)


@router.delete("/{room_id}/users/{user_id}/messages", response_model=schemas.StatusResponse)
async def delete_user_messages_endpoint(
	room_id: str,
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.StatusResponse:
	return await _chat_service.delete_user_messages(auth_user, room_id, user_id)


@router.delete("/{room_id}", response_model=schemas.StatusResponse)
async def deactivate_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.StatusResponse:
	return await _room_service.deactivate_room(auth_user, room_id)
