"""Pydantic schemas for the chat rooms API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AccessTypeValue = Literal["open", "invite"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoomCreateRequest(CamelModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(default="", max_length=500)
    access_type: AccessTypeValue = "open"


class RoomSettingsRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    access_type: Optional[AccessTypeValue] = None


class MemberTargetRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)


class MessageSendRequest(CamelModel):
    content: str = Field(..., min_length=1, max_length=2000)


class StatusResponse(CamelModel):
    message: str


class RoomCreatedResponse(StatusResponse):
    room_id: str


class MuteResponse(StatusResponse):
    is_muted: bool


class RoomSummary(CamelModel):
    id: str
    name: str
    description: str
    created_by: str
    creator_name: Optional[str] = None
    member_count: int
    message_count: int
    access_type: AccessTypeValue
    created_at: datetime
    is_joined: bool


class RoomListResponse(CamelModel):
    rooms: List[RoomSummary]


class ChatMessageDTO(CamelModel):
    id: str
    room_id: str
    user_id: str
    content: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime
    link_preview: Optional[Dict[str, Any]] = None


class SendMessageResponse(CamelModel):
    message: Optional[ChatMessageDTO] = None


class RoomMemberDTO(CamelModel):
    id: str
    username: str
    display_name: str
    avatar_url: str = ""
    is_muted: bool


class RoomInfo(CamelModel):
    id: str
    name: str
    description: str
    created_by: str
    creator_name: Optional[str] = None
    access_type: AccessTypeValue
    created_at: datetime


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class RoomHistoryResponse(CamelModel):
    room: RoomInfo
    messages: List[ChatMessageDTO]
    members: List[RoomMemberDTO]
    is_muted: bool
    pagination: Pagination
