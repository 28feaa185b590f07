"""
Application constants for the global chat service.

This module contains shared constants used across multiple modules,
including the reaction emoji set, badge names, reason codes, broadcast
event names, message templates and formatting utilities.
"""

from datetime import datetime

# Reactions are restricted to this fixed set
REACTION_EMOJIS = ("👍", "❤️", "😂", "😮", "🎉", "🔥")

# Number of normalized texts kept per user for duplicate detection
RECENT_MESSAGES_LIMIT = 5

DEFAULT_MODERATION_REASON = "No reason provided"

# Badges
BADGE_STREAK_7 = "streak_7"
BADGE_STREAK_30 = "streak_30"
BADGE_TOP_CHATTER = "top_chatter"
BADGE_EARLY_USER = "early_user"
BADGE_VETERAN = "veteran"

# Streak length (days) required for each streak badge, checked in order
STREAK_BADGES = (
    (7, BADGE_STREAK_7),
    (30, BADGE_STREAK_30),
)

# Reason codes: validation
MESSAGE_EMPTY = "MESSAGE_EMPTY"
MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
INVALID_EMOJI = "INVALID_EMOJI"
REPLY_TARGET_INVALID = "REPLY_TARGET_INVALID"
INVALID_SETTINGS = "INVALID_SETTINGS"
INVALID_DURATION = "INVALID_DURATION"

# Reason codes: policy denial
USER_BANNED = "USER_BANNED"
USER_BANNED_PERMANENT = "USER_BANNED_PERMANENT"
USER_MUTED = "USER_MUTED"
RATE_LIMIT = "RATE_LIMIT"
DUPLICATE_MESSAGE = "DUPLICATE_MESSAGE"
REACTIONS_DISABLED = "REACTIONS_DISABLED"

# Reason codes: not found / persistence
MESSAGE_NOT_FOUND = "MESSAGE_NOT_FOUND"
USER_STATE_NOT_FOUND = "USER_STATE_NOT_FOUND"
PERSISTENCE_FAILED = "PERSISTENCE_FAILED"

# Broadcast events
EVENT_NEW_MESSAGE = "new-message"
EVENT_MENTION = "mention"
EVENT_MESSAGE_UPDATED = "message-updated"
EVENT_MESSAGE_DELETED = "message-deleted"
EVENT_PINNED_MESSAGE = "pinned-message"
EVENT_PINNED_MESSAGE_REMOVED = "pinned-message-removed"
EVENT_SETTINGS_UPDATED = "settings-updated"


def format_wait_display(seconds: int) -> str:
    """
    Format a wait time in seconds to human-readable text.

    Args:
        seconds: Wait time in seconds.

    Returns:
        Formatted string like "1 second" or "20 seconds".
    """
    if seconds == 1:
        return "1 second"
    return f"{seconds} seconds"


def format_until_display(until: datetime) -> str:
    """
    Format an expiry instant for user-facing messages.

    Args:
        until: Timezone-aware expiry instant.

    Returns:
        Formatted string like "2026-10-19 14:30 UTC".
    """
    return until.strftime("%Y-%m-%d %H:%M %Z").strip()


# Human messages for reason codes. Templates with placeholders are
# formatted by format_denial_message().
REASON_MESSAGES = {
    MESSAGE_EMPTY: "Message text is required.",
    MESSAGE_TOO_LONG: "Message too long. Maximum {max_length} characters.",
    INVALID_EMOJI: "Invalid emoji.",
    REPLY_TARGET_INVALID: "Parent message not found or deleted.",
    INVALID_SETTINGS: "Invalid chat settings: {detail}",
    INVALID_DURATION: "Duration must be a positive number of minutes.",
    RATE_LIMIT: (
        "You're sending messages too fast. "
        "Please wait {wait_display} before sending another message."
    ),
    DUPLICATE_MESSAGE: "You've already sent this message. Try something different.",
    USER_MUTED: "You are muted until {until_display}.",
    USER_BANNED: "You are banned from global chat until {until_display}.",
    USER_BANNED_PERMANENT: "You are permanently banned from global chat.",
    REACTIONS_DISABLED: "Reactions are currently disabled.",
    MESSAGE_NOT_FOUND: "Message not found.",
    USER_STATE_NOT_FOUND: "User state not found.",
    PERSISTENCE_FAILED: "Unable to save changes at this time.",
}

MUTED_PERMANENT_MESSAGE = "You are muted until an admin lifts the mute."
FALLBACK_REASON_MESSAGE = "Unable to send message at this time."


def format_denial_message(
    reason: str,
    retry_after_seconds: int | None = None,
    until: datetime | None = None,
    **extra: object,
) -> str:
    """
    Build the human-readable message for a reason code.

    Args:
        reason: Stable reason code (e.g. RATE_LIMIT).
        retry_after_seconds: Remaining wait for rate limits.
        until: Expiry instant for mutes and temporary bans.
        **extra: Additional template values (max_length, detail).

    Returns:
        str: Message suitable for showing to the user.
    """
    if reason == USER_MUTED and until is None:
        return MUTED_PERMANENT_MESSAGE

    template = REASON_MESSAGES.get(reason)
    if template is None:
        return FALLBACK_REASON_MESSAGE

    values = dict(extra)
    if retry_after_seconds is not None:
        values["wait_display"] = format_wait_display(retry_after_seconds)
    if until is not None:
        values["until_display"] = format_until_display(until)

    return template.format(**values)


# Telegram mirror templates (Markdown)
TELEGRAM_NEW_MESSAGE = "💬 *{username}*: {text}"
TELEGRAM_REPLY_MESSAGE = "↩️ *{username}* (reply to #{reply_to}): {text}"
TELEGRAM_MESSAGE_DELETED = "🗑 Message #{message_id} was removed by a moderator."
TELEGRAM_PINNED_MESSAGE = "📌 Pinned: *{username}*: {text}"
TELEGRAM_PINNED_MESSAGE_REMOVED = "📌 The pinned message was removed."
TELEGRAM_SETTINGS_UPDATED = (
    "⚙️ Chat settings updated: slow mode {slow_mode_seconds}s, "
    "max length {max_message_length}."
)
TELEGRAM_MENTION = "🔔 *{mentioned_by}* mentioned you in global chat: {text}"
