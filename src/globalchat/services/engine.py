"""
Moderation engine for the global chat.

The engine orchestrates chat settings, user chat state and the message
store: it answers "may this user send, react or reply now?", applies admin
actions with their side effects, and tells the broadcast gateway what
happened. Every operation fetches the chat settings once and passes them
explicitly to the policy functions.

Read-modify-write sequences run under the DatabaseService per-record locks.
Events are published only after persistence succeeded and after the lock
was released; publishing never raises.
"""

import logging
import math
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from globalchat.chat_settings import ChatSettingsUpdate, chat_settings_defaults
from globalchat.config import Settings, get_settings
from globalchat.constants import (
    DEFAULT_MODERATION_REASON,
    DUPLICATE_MESSAGE,
    EVENT_MENTION,
    EVENT_MESSAGE_DELETED,
    EVENT_MESSAGE_UPDATED,
    EVENT_NEW_MESSAGE,
    EVENT_PINNED_MESSAGE,
    EVENT_PINNED_MESSAGE_REMOVED,
    EVENT_SETTINGS_UPDATED,
    INVALID_DURATION,
    INVALID_EMOJI,
    INVALID_SETTINGS,
    MESSAGE_EMPTY,
    MESSAGE_NOT_FOUND,
    MESSAGE_TOO_LONG,
    REACTIONS_DISABLED,
    REPLY_TARGET_INVALID,
    USER_STATE_NOT_FOUND,
    format_denial_message,
)
from globalchat.database.models import ChatMessage, ChatSettings, UserChatState
from globalchat.database.service import DatabaseService, MessageFilter
from globalchat.errors import (
    ChatNotFoundError,
    ChatValidationError,
    PersistenceError,
    SendDenied,
)
from globalchat.services.broadcast import BroadcastGateway
from globalchat.services.export import EXPORT_FORMATS, export_messages
from globalchat.services.payloads import (
    message_to_payload,
    settings_to_payload,
    user_state_to_payload,
)
from globalchat.services.policy import (
    aggregate_reactions,
    apply_ban,
    apply_mute,
    clear_ban,
    clear_mute,
    evaluate_send_permission,
    is_duplicate,
    is_valid_emoji,
    record_sent_message,
    toggle_reaction_entries,
)

logger = logging.getLogger(__name__)

REPLIES_DISABLED_MESSAGE = "Replies are currently disabled."


@dataclass
class ChatIdentity:
    """
    Authenticated user as supplied by the identity provider.

    Attributes:
        user_id: User ID.
        display_name: Name shown next to the user's messages.
    """

    user_id: int
    display_name: str


@dataclass
class MessagePage:
    """One page of messages plus pagination info."""

    messages: list[ChatMessage]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> dict:
        return {
            "messages": [message_to_payload(message) for message in self.messages],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }


@dataclass
class UserHistory:
    """A user's messages (deleted ones included) and their chat state."""

    user_id: int
    state: UserChatState | None
    page: MessagePage

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "state": user_state_to_payload(self.state) if self.state else None,
            **self.page.to_dict(),
        }


def _restriction_snapshot(state: UserChatState) -> tuple:
    return (state.is_banned, state.banned_until, state.is_muted, state.muted_until)


class ModerationEngine:
    """
    Entry point for every chat action.

    Usage:
        engine = ModerationEngine(get_database(), LocalBroadcastGateway())
        message = await engine.send_message(ChatIdentity(42, "Ana"), "hello")
    """

    def __init__(
        self,
        db: DatabaseService,
        gateway: BroadcastGateway,
        config: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            db: Repository for messages, user states and settings.
            gateway: Where events are published.
            config: Application settings; defaults to get_settings().
            clock: Returns the current timezone-aware time; defaults to UTC now.
        """
        self._db = db
        self._gateway = gateway
        self._config = config or get_settings()
        self._clock = clock or (lambda: datetime.now(UTC))

    # Helpers

    def _now(self) -> datetime:
        return self._clock()

    def _load_settings(self) -> ChatSettings:
        with self._persisting("load chat settings"):
            return self._db.get_or_create_settings(**chat_settings_defaults(self._config))

    @contextmanager
    def _persisting(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Store failure during {operation}", exc_info=True)
            raise PersistenceError(f"{operation}: {e}") from e

    async def _publish_to_room(self, event: str, payload: dict) -> None:
        try:
            await self._gateway.publish_to_room(event, payload)
        except Exception:
            logger.error(f"Failed to publish {event} to room", exc_info=True)

    async def _publish_to_user(self, user_id: int, event: str, payload: dict) -> None:
        try:
            await self._gateway.publish_to_user(user_id, event, payload)
        except Exception:
            logger.error(f"Failed to publish {event} to user_id={user_id}", exc_info=True)

    def _page_bounds(self, page: int, limit: int) -> tuple[int, int]:
        page = max(page, 1)
        limit = min(max(limit, 1), self._config.history_max_page_size)
        return page, limit

    def _get_live_message(self, message_id: int) -> ChatMessage:
        message = self._db.get_message(message_id)
        if message is None or message.is_deleted:
            raise ChatNotFoundError(MESSAGE_NOT_FOUND)
        return message

    # Sending

    async def send_message(
        self,
        identity: ChatIdentity,
        text: str,
        reply_to_message_id: int | None = None,
        mentions: list[int] | None = None,
    ) -> ChatMessage:
        """
        Post a message to the room on behalf of a user.

        Order of checks: text validation, ban/mute/slow mode, duplicate
        content, reply target. The message and the sender's updated state
        are written in one transaction; events go out afterwards.

        Args:
            identity: Sender.
            text: Message text; surrounding whitespace is trimmed.
            reply_to_message_id: Message being replied to, if any.
            mentions: User IDs to notify; ignored when mentions are disabled.

        Returns:
            ChatMessage: The stored message.

        Raises:
            ChatValidationError: Empty or too long text, invalid reply target.
            SendDenied: Ban, mute, rate limit or duplicate content.
            PersistenceError: The store rejected the write.
        """
        settings = self._load_settings()
        user_id = identity.user_id

        trimmed = (text or "").strip()
        if not trimmed:
            raise ChatValidationError(MESSAGE_EMPTY)
        if len(trimmed) > settings.max_message_length:
            raise ChatValidationError(
                MESSAGE_TOO_LONG,
                format_denial_message(MESSAGE_TOO_LONG, max_length=settings.max_message_length),
            )

        now = self._now()
        with self._persisting("send message"), self._db.user_state_lock(user_id):
            state = self._db.get_user_state(user_id) or UserChatState(user_id=user_id)
            before = _restriction_snapshot(state)
            decision = evaluate_send_permission(state, settings, now)
            expiry_cleared = state.id is not None and _restriction_snapshot(state) != before

            def reject(error: Exception) -> Exception:
                # Cleared expiries are kept even when the send is refused
                if expiry_cleared:
                    self._db.save_user_state(state)
                logger.info(f"Rejected message from user_id={user_id}: {error}")
                return error

            if not decision.allowed:
                raise reject(SendDenied(
                    decision.reason,
                    retry_after_seconds=decision.retry_after_seconds,
                    until=decision.until,
                ))

            if is_duplicate(trimmed, state, settings):
                raise reject(SendDenied(DUPLICATE_MESSAGE))

            if reply_to_message_id is not None:
                if not settings.allow_replies:
                    raise reject(ChatValidationError(REPLY_TARGET_INVALID, REPLIES_DISABLED_MESSAGE))
                parent = self._db.get_message(reply_to_message_id)
                if parent is None or parent.is_deleted:
                    raise reject(ChatValidationError(REPLY_TARGET_INVALID))

            mentioned = list(dict.fromkeys(mentions or [])) if settings.allow_mentions else []
            message = ChatMessage(
                user_id=user_id,
                username=identity.display_name or "Unknown",
                text=trimmed,
                reply_to_message_id=reply_to_message_id,
                mentions=mentioned,
                created_at=now,
                updated_at=now,
            )
            awarded = record_sent_message(trimmed, state, now)
            message = self._db.record_sent_message(message, state)

        logger.info(f"Message {message.id} sent by user_id={user_id}")
        if awarded:
            logger.info(f"Awarded {', '.join(awarded)} to user_id={user_id}")

        payload = message_to_payload(message)
        await self._publish_to_room(EVENT_NEW_MESSAGE, {"message": payload})
        mentioned_by = {"id": user_id, "name": identity.display_name}
        for mentioned_user_id in mentioned:
            await self._publish_to_user(
                mentioned_user_id,
                EVENT_MENTION,
                {"message": payload, "mentionedBy": mentioned_by},
            )
        return message

    async def toggle_reaction(self, message_id: int, user_id: int, emoji: str) -> dict[str, dict]:
        """
        Add a reaction, or remove it if the user already reacted with that emoji.

        Args:
            message_id: Target message.
            user_id: Reacting user.
            emoji: One of the fixed reaction emojis.

        Returns:
            dict[str, dict]: {emoji: {"count", "users"}} after the toggle.

        Raises:
            ChatValidationError: Emoji outside the allowed set.
            SendDenied: Reactions are disabled.
            ChatNotFoundError: Message missing or deleted.
        """
        if not is_valid_emoji(emoji):
            raise ChatValidationError(INVALID_EMOJI)
        settings = self._load_settings()
        if not settings.allow_reactions:
            raise SendDenied(REACTIONS_DISABLED)

        now = self._now()
        with self._persisting("toggle reaction"), self._db.message_lock(message_id):
            message = self._get_live_message(message_id)
            message.reactions, added = toggle_reaction_entries(
                message.reactions, user_id, emoji, now
            )
            message = self._db.save_message(message)

        logger.info(
            f"Reaction {emoji} {'added to' if added else 'removed from'} "
            f"message_id={message_id} by user_id={user_id}"
        )
        counts = aggregate_reactions(message.reactions)
        await self._publish_to_room(
            EVENT_MESSAGE_UPDATED, {"messageId": message_id, "reactions": counts}
        )
        return counts

    # Admin: messages

    async def delete_message(self, message_id: int, admin_id: int) -> ChatMessage:
        """
        Soft-delete a message. A pinned message is unpinned as well.

        Raises:
            ChatNotFoundError: Message missing or already deleted.
        """
        now = self._now()
        with self._persisting("delete message"), self._db.message_lock(message_id):
            message = self._get_live_message(message_id)
            was_pinned = message.is_pinned
            message.is_deleted = True
            message.deleted_at = now
            message.deleted_by = admin_id
            if was_pinned:
                message.is_pinned = False
                message.pinned_at = None
                message.pinned_by = None
            message = self._db.save_message(message)

        logger.info(f"Message {message_id} deleted by admin_id={admin_id}")
        await self._publish_to_room(EVENT_MESSAGE_DELETED, {"messageId": message_id})
        if was_pinned:
            await self._publish_to_room(EVENT_PINNED_MESSAGE_REMOVED, {})
        return message

    async def set_pinned(self, message_id: int, admin_id: int, pin: bool) -> ChatMessage:
        """
        Pin or unpin a message.

        Pinning unpins every other message in the same transaction, so at
        most one non-deleted message is pinned. Unpinning a message that is
        not pinned changes nothing and publishes nothing.

        Raises:
            ChatNotFoundError: Message missing or deleted.
        """
        now = self._now()
        with self._persisting("pin message"), self._db.message_lock(message_id):
            was_pinned = False
            if pin:
                message = self._db.pin_message_exclusive(message_id, admin_id, now)
                if message is None:
                    raise ChatNotFoundError(MESSAGE_NOT_FOUND)
            else:
                message = self._get_live_message(message_id)
                was_pinned = message.is_pinned
                if was_pinned:
                    message.is_pinned = False
                    message.pinned_at = None
                    message.pinned_by = None
                    message = self._db.save_message(message)

        if pin:
            logger.info(f"Message {message_id} pinned by admin_id={admin_id}")
            await self._publish_to_room(
                EVENT_PINNED_MESSAGE, {"message": message_to_payload(message)}
            )
        elif was_pinned:
            logger.info(f"Message {message_id} unpinned by admin_id={admin_id}")
            await self._publish_to_room(EVENT_PINNED_MESSAGE_REMOVED, {})
        return message

    # Admin: users

    def _restrict(
        self,
        user_id: int,
        admin_id: int,
        duration_minutes: int | None,
        reason: str | None,
        apply: Callable,
        action: str,
    ) -> UserChatState:
        if duration_minutes is not None and duration_minutes <= 0:
            raise ChatValidationError(INVALID_DURATION)

        now = self._now()
        until = now + timedelta(minutes=duration_minutes) if duration_minutes else None
        with self._persisting(action), self._db.user_state_lock(user_id):
            state = self._db.get_user_state(user_id) or UserChatState(user_id=user_id)
            apply(state, admin_id, until, reason or DEFAULT_MODERATION_REASON)
            state = self._db.save_user_state(state)

        length = f"for {duration_minutes} minutes" if duration_minutes else "permanently"
        logger.info(f"User {user_id} {action} {length} by admin_id={admin_id}")
        return state

    def _lift(self, user_id: int, clear: Callable, action: str) -> UserChatState:
        with self._persisting(action), self._db.user_state_lock(user_id):
            state = self._db.get_user_state(user_id)
            if state is None:
                raise ChatNotFoundError(USER_STATE_NOT_FOUND)
            clear(state)
            state = self._db.save_user_state(state)

        logger.info(f"User {user_id} {action}")
        return state

    async def mute_user(
        self,
        user_id: int,
        admin_id: int,
        duration_minutes: int | None = None,
        reason: str | None = None,
    ) -> UserChatState:
        """
        Mute a user, for a number of minutes or until unmuted.

        Raises:
            ChatValidationError: Duration given but not positive.
        """
        return self._restrict(user_id, admin_id, duration_minutes, reason, apply_mute, "muted")

    async def unmute_user(self, user_id: int) -> UserChatState:
        """
        Raises:
            ChatNotFoundError: The user has no chat state.
        """
        return self._lift(user_id, clear_mute, "unmuted")

    async def ban_user(
        self,
        user_id: int,
        admin_id: int,
        duration_minutes: int | None = None,
        reason: str | None = None,
    ) -> UserChatState:
        """
        Ban a user, for a number of minutes or permanently.

        Raises:
            ChatValidationError: Duration given but not positive.
        """
        return self._restrict(user_id, admin_id, duration_minutes, reason, apply_ban, "banned")

    async def unban_user(self, user_id: int) -> UserChatState:
        """
        Raises:
            ChatNotFoundError: The user has no chat state.
        """
        return self._lift(user_id, clear_ban, "unbanned")

    # Admin: settings

    async def get_chat_settings(self) -> ChatSettings:
        return self._load_settings()

    async def update_settings(self, admin_id: int, **fields) -> ChatSettings:
        """
        Change some chat settings; fields not given keep their value.

        Args:
            admin_id: Admin making the change.
            **fields: Any of slow_mode_seconds, max_message_length,
                max_duplicate_check, allow_reactions, allow_replies,
                allow_mentions.

        Returns:
            ChatSettings: The updated settings.

        Raises:
            ChatValidationError: Unknown field or value out of range.
        """
        try:
            changes = ChatSettingsUpdate(**fields).model_dump(exclude_unset=True)
        except ValidationError as e:
            detail = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            raise ChatValidationError(
                INVALID_SETTINGS, format_denial_message(INVALID_SETTINGS, detail=detail)
            ) from e

        with self._db.settings_lock():
            settings = self._load_settings()
            for name, value in changes.items():
                setattr(settings, name, value)
            settings.updated_by = admin_id
            with self._persisting("update settings"):
                settings = self._db.save_settings(settings)

        logger.info(f"Chat settings updated by admin_id={admin_id}: {changes}")
        await self._publish_to_room(
            EVENT_SETTINGS_UPDATED, {"settings": settings_to_payload(settings)}
        )
        return settings

    # Queries

    async def get_messages(
        self,
        page: int = 1,
        limit: int = 50,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> MessagePage:
        """
        Room history without deleted messages.

        The newest messages form page 1; each page is returned oldest first.
        """
        page, limit = self._page_bounds(page, limit)
        message_filter = MessageFilter(
            is_deleted=False, created_before=before, created_after=after
        )
        with self._persisting("load messages"):
            messages = self._db.find_messages(
                message_filter, limit=limit, skip=(page - 1) * limit
            )
            total = self._db.count_messages(message_filter)
        messages.reverse()
        return MessagePage(messages=messages, page=page, limit=limit, total=total)

    async def get_pinned_message(self) -> ChatMessage | None:
        with self._persisting("load pinned message"):
            return self._db.find_one_message(
                MessageFilter(is_pinned=True, is_deleted=False), sort_by="pinned_at"
            )

    async def list_messages_admin(
        self,
        page: int = 1,
        limit: int = 50,
        user_id: int | None = None,
        search: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        is_deleted: bool | None = None,
        sort_by: str = "created_at",
    ) -> MessagePage:
        """
        Admin view of the message log, deleted messages included unless filtered.

        Args:
            sort_by: "created_at" or "updated_at", newest first.
        """
        page, limit = self._page_bounds(page, limit)
        if sort_by != "updated_at":
            sort_by = "created_at"
        message_filter = MessageFilter(
            user_id=user_id,
            search=search,
            created_from=start_date,
            created_to=end_date,
            is_deleted=is_deleted,
        )
        with self._persisting("load admin messages"):
            messages = self._db.find_messages(
                message_filter, sort_by=sort_by, limit=limit, skip=(page - 1) * limit
            )
            total = self._db.count_messages(message_filter)
        return MessagePage(messages=messages, page=page, limit=limit, total=total)

    async def get_user_history(self, user_id: int, page: int = 1, limit: int = 50) -> UserHistory:
        page, limit = self._page_bounds(page, limit)
        message_filter = MessageFilter(user_id=user_id)
        with self._persisting("load user history"):
            messages = self._db.find_messages(
                message_filter, limit=limit, skip=(page - 1) * limit
            )
            total = self._db.count_messages(message_filter)
            state = self._db.get_user_state(user_id)
        return UserHistory(
            user_id=user_id,
            state=state,
            page=MessagePage(messages=messages, page=page, limit=limit, total=total),
        )

    async def export_messages(
        self,
        fmt: str = "json",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> str:
        """
        Export the full message log (deleted messages included), oldest first.

        Raises:
            ValueError: If the format is not json or csv.
        """
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt!r}")
        message_filter = MessageFilter(created_from=start_date, created_to=end_date)
        with self._persisting("export messages"):
            messages = self._db.find_messages(message_filter, descending=False)
        logger.info(f"Exported {len(messages)} message(s) as {fmt}")
        return export_messages(messages, fmt, self._now())
