"""
Wire representations of chat records.

Broadcast events and query results share these shapes. Keys are camelCase
because the payloads go straight to browser clients. Message payloads carry
aggregated reaction counts, never the raw per-reaction entries.
"""

from datetime import datetime

from globalchat.database.models import ChatMessage, ChatSettings, UserChatState
from globalchat.services.policy import aggregate_reactions, as_utc


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value is not None else None


def message_to_payload(message: ChatMessage) -> dict:
    return {
        "id": message.id,
        "userId": message.user_id,
        "username": message.username,
        "text": message.text,
        "replyToMessageId": message.reply_to_message_id,
        "mentions": list(message.mentions),
        "reactions": aggregate_reactions(message.reactions),
        "isDeleted": message.is_deleted,
        "deletedAt": _iso(message.deleted_at),
        "deletedBy": message.deleted_by,
        "isPinned": message.is_pinned,
        "pinnedAt": _iso(message.pinned_at),
        "pinnedBy": message.pinned_by,
        "createdAt": _iso(message.created_at),
        "updatedAt": _iso(message.updated_at),
    }


def settings_to_payload(settings: ChatSettings) -> dict:
    return {
        "slowModeSeconds": settings.slow_mode_seconds,
        "maxMessageLength": settings.max_message_length,
        "maxDuplicateCheck": settings.max_duplicate_check,
        "allowReactions": settings.allow_reactions,
        "allowReplies": settings.allow_replies,
        "allowMentions": settings.allow_mentions,
        "updatedBy": settings.updated_by,
        "updatedAt": _iso(settings.updated_at),
    }


def user_state_to_payload(state: UserChatState) -> dict:
    return {
        "userId": state.user_id,
        "lastMessageAt": _iso(state.last_message_at),
        "isMuted": state.is_muted,
        "mutedUntil": _iso(state.muted_until),
        "mutedBy": state.muted_by,
        "muteReason": state.mute_reason,
        "isBanned": state.is_banned,
        "bannedUntil": _iso(state.banned_until),
        "bannedBy": state.banned_by,
        "banReason": state.ban_reason,
        "chatStreak": state.chat_streak,
        "lastChatDate": state.last_chat_date.isoformat() if state.last_chat_date else None,
        "totalMessages": state.total_messages,
        "badges": list(state.badges),
    }
