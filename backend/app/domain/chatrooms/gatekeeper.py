"""Authorization for joining chat rooms and sending messages.

Both the HTTP routes and the socket namespace go through this module, so the
check sequence exists exactly once. Every check re-reads durable state on each
call: kicks, mutes and membership can change between two messages.

Send pipeline, short-circuiting on the first failure:

1. kick ledger (evict, `memberKicked`)
2. room exists and is active (evict)
3. sender exists and is active, otherwise a silent drop (evict)
4. invite-only rooms require a membership (evict, `memberKicked`)
5. open rooms auto-join the sender after a second kick check
6. membership re-read (evict, `memberKicked`)
7. admin mute
8. flood check for non-admins, auto-muting on overflow
9. sanitize, dropping messages that end up empty
10. link preview for the first URL (best effort)
11. persist, 12. broadcast, 13. mention notifications (best effort)
"""

from __future__ import annotations

import logging
import re
from typing import NoReturn, Optional

from app.domain.chatrooms import link_preview, models, policy, sanitize, state
from app.domain.chatrooms.fanout import DeliveryFanout
from app.domain.chatrooms.kick_ledger import KickLedger
from app.domain.chatrooms.notifications import NotificationService
from app.domain.chatrooms.policy import ChatRejected, Rejection
from app.domain.chatrooms.rate_tracker import RateTracker
from app.domain.chatrooms.repository import MessageRepository, RoomRepository
from app.domain.chatrooms.users import UserRepository
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@([A-Za-z0-9_]+)")


class Gatekeeper:
	def __init__(
		self,
		*,
		rooms: RoomRepository | None = None,
		messages: MessageRepository | None = None,
		users: UserRepository | None = None,
		fanout: DeliveryFanout | None = None,
		notifications: NotificationService | None = None,
		kick_ledger: KickLedger | None = None,
		rate_tracker: RateTracker | None = None,
		previews: link_preview.LinkPreviewClient | None = None,
	) -> None:
		self._rooms = rooms or RoomRepository()
		self._messages = messages or MessageRepository()
		self._users = users or UserRepository()
		self._fanout = fanout or DeliveryFanout()
		self._notifications = notifications or NotificationService(fanout=self._fanout)
		self._kick_ledger = kick_ledger
		self._rate_tracker = rate_tracker
		self._previews = previews

	@property
	def kick_ledger(self) -> KickLedger:
		return self._kick_ledger if self._kick_ledger is not None else state.kick_ledger()

	@property
	def rate_tracker(self) -> RateTracker:
		return self._rate_tracker if self._rate_tracker is not None else state.rate_tracker()

	def _reject(self, action: str, kind: Rejection) -> NoReturn:
		obs_metrics.chat_gate_decision(action, kind.code)
		raise ChatRejected(kind)

	async def _evict(self, room_id: str, user_id: str, *, kicked_notice: bool = False) -> None:
		await self._fanout.evict_user(room_id, user_id)
		if kicked_notice:
			await self._fanout.notify_kicked(room_id, user_id)

	async def authorize_join(self, room_id: str, user_id: str, *, is_admin: bool = False) -> models.ChatRoom:
		"""Admit the user to the room's live channel or raise ChatRejected.

		Joining never creates a membership; for open rooms that happens on the
		first send.
		"""
		if await self.kick_ledger.is_blocked(room_id, user_id):
			self._reject("join", Rejection.KICKED)
		room = await self._rooms.get_room(room_id)
		if room is None or not room.is_active:
			self._reject("join", Rejection.ROOM_NOT_FOUND)
		if room.is_invite_only() and not is_admin:
			if await self._rooms.get_member(room_id, user_id) is None:
				self._reject("join", Rejection.NOT_INVITED)
		obs_metrics.chat_gate_decision("join", "allowed")
		return room

	async def authorize_and_record_send(
		self,
		room_id: str,
		user_id: str,
		raw_content: str,
		*,
		is_admin: bool = False,
		transport: str = "http",
	) -> Optional[models.PostedMessage]:
		"""Run the send pipeline; returns None when the message is silently dropped."""
		content = (raw_content or "").strip()
		if not content:
			self._reject("send", Rejection.INVALID_INPUT)

		if await self.kick_ledger.is_blocked(room_id, user_id):
			await self._evict(room_id, user_id, kicked_notice=True)
			self._reject("send", Rejection.KICKED)

		room = await self._rooms.get_room(room_id)
		if room is None or not room.is_active:
			await self._evict(room_id, user_id)
			self._reject("send", Rejection.ROOM_NOT_FOUND)

		author = await self._users.get_user(user_id)
		if author is None or not author.is_active:
			await self._evict(room_id, user_id)
			obs_metrics.chat_gate_decision("send", "dropped")
			logger.info("dropping message from unknown or inactive user", extra={"room_id": room_id, "user_id": user_id})
			return None
		is_admin = is_admin or author.is_admin()

		membership = await self._rooms.get_member(room_id, user_id)
		if membership is None:
			if room.is_invite_only():
				await self._evict(room_id, user_id, kicked_notice=True)
				self._reject("send", Rejection.NOT_INVITED)
			# A kick may have landed while the reads above were in flight.
			if await self.kick_ledger.is_blocked(room_id, user_id):
				await self._evict(room_id, user_id, kicked_notice=True)
				self._reject("send", Rejection.KICKED)
			try:
				await self._rooms.add_member(room_id, user_id)
			except policy.DuplicateMember:
				logger.debug("auto-join raced with another insert", extra={"room_id": room_id, "user_id": user_id})
			membership = await self._rooms.get_member(room_id, user_id)

		if membership is None:
			await self._evict(room_id, user_id, kicked_notice=True)
			self._reject("send", Rejection.NOT_MEMBER)

		if membership.is_muted:
			self._reject("send", Rejection.MUTED)

		if not is_admin:
			check = await self.rate_tracker.record_and_check(room_id, user_id)
			if not check.within_limit:
				await self._rooms.set_muted(room_id, user_id, True)
				obs_metrics.inc_chat_auto_mute()
				logger.warning(
					"auto-muted user for flooding",
					extra={"room_id": room_id, "user_id": user_id, "count": check.count},
				)
				await self._fanout.member_list_updated(room_id)
				self._reject("send", Rejection.AUTO_MUTED)

		content = sanitize.sanitize_html(content).strip()
		if not content:
			obs_metrics.chat_gate_decision("send", "dropped")
			return None

		preview = await self._resolve_preview(content)
		message = await self._messages.insert_message(
			room_id=room_id,
			user_id=user_id,
			content=content,
			link_preview=preview,
		)
		posted = models.PostedMessage(message=message, author=author)
		obs_metrics.inc_chat_message(transport)
		obs_metrics.chat_gate_decision("send", "allowed")
		await self._fanout.broadcast(room_id, posted.to_payload())
		await self._notify_mentions(room, author, content)
		return posted

	async def record_kick(self, room_id: str, user_id: str) -> None:
		"""Block the user for the cooldown and drop them from the room everywhere."""
		await self.kick_ledger.record(room_id, user_id)
		await self._rooms.remove_member(room_id, user_id)
		await self._evict(room_id, user_id, kicked_notice=True)
		await self._fanout.member_list_updated(room_id)
		obs_metrics.inc_chat_kick()
		logger.info("member kicked", extra={"room_id": room_id, "target_user_id": user_id})

	async def clear_kick(self, room_id: str, user_id: str) -> None:
		await self.kick_ledger.clear(room_id, user_id)

	async def _resolve_preview(self, content: str) -> Optional[dict]:
		if not settings.link_preview_enabled:
			return None
		url = link_preview.first_url(content)
		if url is None:
			return None
		client = self._previews if self._previews is not None else link_preview.get_client()
		try:
			preview = await client.fetch(url)
		except Exception:
			obs_metrics.chat_side_effect_failed("link_preview")
			logger.warning("link preview failed", exc_info=True, extra={"url": url})
			return None
		return preview.to_dict()

	async def _notify_mentions(self, room: models.ChatRoom, author: models.ChatUser, content: str) -> None:
		seen: set[str] = set()
		for match in MENTION_PATTERN.finditer(content):
			handle = match.group(1).lower()
			if handle in seen:
				continue
			seen.add(handle)
			try:
				target = await self._users.find_by_username(handle)
				if target is None or target.id == author.id:
					continue
				if await self._rooms.get_member(room.id, target.id) is None:
					continue
				await self._notifications.notify(
					user_id=target.id,
					sender_id=author.id,
					kind="mention",
					title=f"{author.display_name} mentioned you in {room.name}",
					content=content[: settings.chat_mention_snippet_chars],
					reference_id=room.id,
				)
			except Exception:
				obs_metrics.chat_side_effect_failed("mention")
				logger.warning("mention notification failed", exc_info=True, extra={"room_id": room.id, "mention": handle})
