"""Domain models for chat rooms, memberships and messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


AccessType = str
ACCESS_OPEN: AccessType = "open"
ACCESS_INVITE: AccessType = "invite"
ACCESS_TYPES = (ACCESS_OPEN, ACCESS_INVITE)

ADMIN_ROLE = "admin"


@dataclass(slots=True)
class ChatRoom:
    """Persisted representation of a chat room."""

    id: str
    name: str
    description: str
    created_by: str
    access_type: AccessType
    is_active: bool
    created_at: datetime
    updated_at: datetime
    members_count: int = 0
    messages_count: int = 0

    def is_invite_only(self) -> bool:
        return self.access_type == ACCESS_INVITE


@dataclass(slots=True)
class RoomMember:
    room_id: str
    user_id: str
    is_muted: bool
    joined_at: datetime


@dataclass(slots=True)
class ChatUser:
    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None
    role: str = "user"
    is_active: bool = True

    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


@dataclass(slots=True)
class ChatMessage:
    id: str
    room_id: str
    user_id: str
    content: str
    created_at: datetime
    link_preview: Optional[Dict[str, Any]] = None

    def to_payload(self, author: Optional[ChatUser] = None) -> dict:
        """Client-facing representation, including the author's public profile."""
        return {
            "id": self.id,
            "roomId": self.room_id,
            "userId": self.user_id,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
            "username": author.username if author else None,
            "displayName": author.display_name if author else None,
            "avatarUrl": author.avatar_url if author else None,
            "linkPreview": self.link_preview,
        }


@dataclass(slots=True)
class PostedMessage:
    """A message accepted by the gatekeeper together with its author."""

    message: ChatMessage
    author: ChatUser

    def to_payload(self) -> dict:
        return self.message.to_payload(self.author)


@dataclass(slots=True)
class Notification:
    id: str
    user_id: str
    sender_id: Optional[str]
    type: str
    title: str
    content: str
    reference_id: Optional[str]
    created_at: datetime
    is_read: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "senderId": self.sender_id,
            "type": self.type,
            "title": self.title,
            "content": self.content,
            "referenceId": self.reference_id,
            "isRead": self.is_read,
            "createdAt": self.created_at.isoformat(),
        }
