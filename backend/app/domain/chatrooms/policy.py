"""Policy errors and guards for chat rooms."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from app.domain.chatrooms import models


class RoomPolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


class Rejection(Enum):
	"""Closed set of reasons the gatekeeper refuses a join or send."""

	KICKED = ("kicked", 403, "You were recently removed from this room. Please try again later.")
	ROOM_NOT_FOUND = ("room_not_found", 404, "Chat room not found.")
	NOT_INVITED = ("not_invited", 403, "This room is invite-only.")
	NOT_MEMBER = ("not_member", 403, "You are not a member of this room.")
	MUTED = ("muted", 403, "You are muted in this room.")
	AUTO_MUTED = ("auto_muted", 403, "You have been muted for sending messages too quickly.")
	INVALID_INPUT = ("invalid_input", 400, "Message content is required.")

	def __init__(self, code: str, status_code: int, message: str) -> None:
		self.code = code
		self.status_code = status_code
		self.message = message


class ChatRejected(RoomPolicyError):
	def __init__(self, kind: Rejection) -> None:
		super().__init__(kind.code, status_code=kind.status_code, message=kind.message)
		self.kind = kind


class DuplicateMember(RoomPolicyError):
	def __init__(self) -> None:
		super().__init__("already_member", status_code=409, message="User is already a member of this room.")


def ensure_room(room: Optional[models.ChatRoom]) -> models.ChatRoom:
	if room is None or not room.is_active:
		raise RoomPolicyError("room_not_found", status_code=404, message="Chat room not found.")
	return room


def ensure_member(member: Optional[models.RoomMember]) -> models.RoomMember:
	if member is None:
		raise RoomPolicyError("member_not_found", status_code=404, message="Member not found in this room.")
	return member


def ensure_not_self(actor_id: str, target_id: str) -> None:
	if actor_id == target_id:
		raise RoomPolicyError("cannot_kick_self", status_code=400, message="You cannot kick yourself.")


def normalise_access_type(value: Optional[str]) -> models.AccessType:
	text = (value or models.ACCESS_OPEN).strip().lower()
	if text not in models.ACCESS_TYPES:
		raise RoomPolicyError("invalid_access_type", status_code=400)
	return text
