"""Chat rooms domain exports."""

from .chat_service import RoomChatService
from .gatekeeper import Gatekeeper
from .service import RoomService

__all__ = ["Gatekeeper", "RoomService", "RoomChatService"]
