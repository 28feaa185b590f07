"""
Telegram broadcast gateway.

Mirrors room events into a Telegram chat (optionally a forum topic) and
delivers user events as direct messages. Telegram is a best-effort mirror:
send failures are logged and never reach the moderation engine.
"""

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, TelegramError
from telegram.helpers import escape_markdown

from globalchat.constants import (
    EVENT_MENTION,
    EVENT_MESSAGE_DELETED,
    EVENT_NEW_MESSAGE,
    EVENT_PINNED_MESSAGE,
    EVENT_PINNED_MESSAGE_REMOVED,
    EVENT_SETTINGS_UPDATED,
    TELEGRAM_MENTION,
    TELEGRAM_MESSAGE_DELETED,
    TELEGRAM_NEW_MESSAGE,
    TELEGRAM_PINNED_MESSAGE,
    TELEGRAM_PINNED_MESSAGE_REMOVED,
    TELEGRAM_REPLY_MESSAGE,
    TELEGRAM_SETTINGS_UPDATED,
)
from globalchat.services.broadcast import BroadcastGateway

logger = logging.getLogger(__name__)


def _md(value: object) -> str:
    """Escape user-supplied text for legacy Markdown."""
    return escape_markdown(str(value), version=1)


def render_room_event(event: str, payload: dict) -> str | None:
    """
    Build the Telegram text for a room event.

    Args:
        event: Broadcast event name.
        payload: Event payload as produced by the moderation engine.

    Returns:
        str | None: Markdown text, or None for events that are not mirrored
            (reaction updates would flood the chat).
    """
    if event == EVENT_NEW_MESSAGE:
        message = payload["message"]
        if message.get("replyToMessageId") is not None:
            return TELEGRAM_REPLY_MESSAGE.format(
                username=_md(message["username"]),
                reply_to=message["replyToMessageId"],
                text=_md(message["text"]),
            )
        return TELEGRAM_NEW_MESSAGE.format(
            username=_md(message["username"]), text=_md(message["text"])
        )
    if event == EVENT_MESSAGE_DELETED:
        return TELEGRAM_MESSAGE_DELETED.format(message_id=payload["messageId"])
    if event == EVENT_PINNED_MESSAGE:
        message = payload["message"]
        return TELEGRAM_PINNED_MESSAGE.format(
            username=_md(message["username"]), text=_md(message["text"])
        )
    if event == EVENT_PINNED_MESSAGE_REMOVED:
        return TELEGRAM_PINNED_MESSAGE_REMOVED
    if event == EVENT_SETTINGS_UPDATED:
        settings = payload["settings"]
        return TELEGRAM_SETTINGS_UPDATED.format(
            slow_mode_seconds=settings["slowModeSeconds"],
            max_message_length=settings["maxMessageLength"],
        )
    return None


def render_user_event(event: str, payload: dict) -> str | None:
    if event == EVENT_MENTION:
        return TELEGRAM_MENTION.format(
            mentioned_by=_md(payload["mentionedBy"]["name"]),
            text=_md(payload["message"]["text"]),
        )
    return None


class TelegramBroadcastGateway(BroadcastGateway):
    """
    Gateway that forwards chat events through a Telegram bot.

    Usage:
        gateway = TelegramBroadcastGateway(Bot(token), room_chat_id=-100123)
    """

    def __init__(self, bot: Bot, room_chat_id: int, room_topic_id: int | None = None) -> None:
        """
        Args:
            bot: Telegram bot instance.
            room_chat_id: Chat that mirrors room events.
            room_topic_id: Forum topic inside the room chat (None for the main thread).
        """
        self._bot = bot
        self._room_chat_id = room_chat_id
        self._room_topic_id = room_topic_id

    async def publish_to_room(self, event: str, payload: dict) -> None:
        text = render_room_event(event, payload)
        if text is None:
            return
        try:
            await self._bot.send_message(
                chat_id=self._room_chat_id,
                message_thread_id=self._room_topic_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
            )
            logger.debug(f"Mirrored {event} to chat {self._room_chat_id}")
        except TelegramError:
            logger.error(f"Failed to mirror {event} to chat {self._room_chat_id}", exc_info=True)

    async def publish_to_user(self, user_id: int, event: str, payload: dict) -> None:
        text = render_user_event(event, payload)
        if text is None:
            return
        try:
            await self._bot.send_message(
                chat_id=user_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
            )
            logger.debug(f"Sent {event} notification to user_id={user_id}")
        except (BadRequest, Forbidden):
            # User never started the bot or blocked it
            logger.warning(f"Cannot send {event} notification to user_id={user_id}")
        except TelegramError:
            logger.error(f"Failed to send {event} notification to user_id={user_id}", exc_info=True)
