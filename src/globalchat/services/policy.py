"""
Moderation policy for the global chat.

Pure decision functions over a user's chat state and the chat settings.
Nothing here touches the database or the broadcast gateway: callers load
the records, call these functions with an explicit ``now`` and persist
whatever the functions changed.

Mute and ban expiry is lazy. An expired mute or ban is only cleared when
evaluate_send_permission() looks at the state, which is why that function
mutates its argument and why callers save the state even on denial.
"""

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

from globalchat.constants import (
    RATE_LIMIT,
    REACTION_EMOJIS,
    RECENT_MESSAGES_LIMIT,
    STREAK_BADGES,
    USER_BANNED,
    USER_BANNED_PERMANENT,
    USER_MUTED,
)
from globalchat.database.models import ChatSettings, UserChatState


def as_utc(value: datetime | None) -> datetime | None:
    """
    Make a datetime timezone-aware.

    SQLite returns naive datetimes, which are stored in UTC.

    Args:
        value: Datetime read from the database, or None.

    Returns:
        datetime | None: The same instant with tzinfo set, or None.
    """
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def local_day(now: datetime) -> date:
    """Calendar day of an instant in the server's local timezone."""
    return now.astimezone().date()


def normalize_text(text: str) -> str:
    return text.strip().casefold()


@dataclass
class SendDecision:
    """
    Result of a send permission check.

    Attributes:
        allowed: True if the user may send now.
        reason: Denial reason code, None when allowed.
        retry_after_seconds: Whole seconds to wait (RATE_LIMIT only).
        until: Expiry instant of a temporary mute or ban.
    """

    allowed: bool
    reason: str | None = None
    retry_after_seconds: int | None = None
    until: datetime | None = None

    @classmethod
    def allow(cls) -> "SendDecision":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        reason: str,
        retry_after_seconds: int | None = None,
        until: datetime | None = None,
    ) -> "SendDecision":
        return cls(
            allowed=False,
            reason=reason,
            retry_after_seconds=retry_after_seconds,
            until=until,
        )


def clear_ban(state: UserChatState) -> None:
    state.is_banned = False
    state.banned_until = None
    state.banned_by = None
    state.ban_reason = None


def clear_mute(state: UserChatState) -> None:
    state.is_muted = False
    state.muted_until = None
    state.muted_by = None
    state.mute_reason = None


def apply_ban(
    state: UserChatState, admin_id: int, until: datetime | None, reason: str
) -> None:
    state.is_banned = True
    state.banned_until = until
    state.banned_by = admin_id
    state.ban_reason = reason


def apply_mute(
    state: UserChatState, admin_id: int, until: datetime | None, reason: str
) -> None:
    state.is_muted = True
    state.muted_until = until
    state.muted_by = admin_id
    state.mute_reason = reason


def evaluate_send_permission(
    state: UserChatState, settings: ChatSettings, now: datetime
) -> SendDecision:
    """
    Decide whether a user may send a message now.

    Checks run in order and the first match wins:
    1. Ban: expired bans are cleared; otherwise USER_BANNED (with expiry)
       or USER_BANNED_PERMANENT (no expiry).
    2. Mute: expired mutes are cleared; otherwise USER_MUTED. A mute
       without expiry stays in force until an admin lifts it.
    3. Slow mode: RATE_LIMIT with the remaining wait rounded up.

    Args:
        state: User's chat state. Modified when an expired mute or ban is cleared.
        settings: Current chat settings.
        now: Timezone-aware current time.

    Returns:
        SendDecision: Allowed, or denied with reason and retry hint.
    """
    if state.is_banned:
        banned_until = as_utc(state.banned_until)
        if banned_until is None:
            return SendDecision.deny(USER_BANNED_PERMANENT)
        if banned_until > now:
            return SendDecision.deny(USER_BANNED, until=banned_until)
        clear_ban(state)

    if state.is_muted:
        muted_until = as_utc(state.muted_until)
        if muted_until is None:
            return SendDecision.deny(USER_MUTED)
        if muted_until > now:
            return SendDecision.deny(USER_MUTED, until=muted_until)
        clear_mute(state)

    last_message_at = as_utc(state.last_message_at)
    if last_message_at is not None:
        slow_mode = timedelta(seconds=settings.slow_mode_seconds)
        elapsed = now - last_message_at
        if elapsed < slow_mode:
            remaining = (slow_mode - elapsed).total_seconds()
            return SendDecision.deny(RATE_LIMIT, retry_after_seconds=math.ceil(remaining))

    return SendDecision.allow()


def is_duplicate(text: str, state: UserChatState, settings: ChatSettings) -> bool:
    """
    Check whether text repeats too often in the user's recent messages.

    Args:
        text: Candidate message text.
        state: User's chat state (not modified).
        settings: Current chat settings.

    Returns:
        bool: True if the normalized text already appears at least
            max_duplicate_check times in recent history.
    """
    normalized = normalize_text(text)
    count = sum(1 for previous in state.last_messages if previous == normalized)
    return count >= settings.max_duplicate_check


def update_streak(state: UserChatState, today: date) -> None:
    """
    Advance the consecutive-day streak for a message sent on ``today``.

    Same day: unchanged. Next day: +1. Any gap or first message: 1.
    """
    if state.last_chat_date is None:
        state.chat_streak = 1
        state.last_chat_date = today
        return

    days = (today - state.last_chat_date).days
    if days == 0:
        return
    if days == 1:
        state.chat_streak += 1
    else:
        state.chat_streak = 1
    state.last_chat_date = today


def award_streak_badges(state: UserChatState) -> list[str]:
    """
    Grant streak badges the current streak qualifies for.

    Badges are append-only; a broken streak never revokes one.

    Returns:
        list[str]: Badges newly awarded by this call.
    """
    awarded = [
        badge
        for threshold, badge in STREAK_BADGES
        if state.chat_streak >= threshold and badge not in state.badges
    ]
    if awarded:
        state.badges = [*state.badges, *awarded]
    return awarded


def record_sent_message(text: str, state: UserChatState, now: datetime) -> list[str]:
    """
    Update a user's state after a message was accepted.

    Args:
        text: The accepted message text.
        state: User's chat state, modified in place.
        now: Timezone-aware send time.

    Returns:
        list[str]: Badges newly awarded by this message.
    """
    state.last_message_at = now
    state.last_messages = [normalize_text(text), *state.last_messages][:RECENT_MESSAGES_LIMIT]
    state.total_messages += 1
    update_streak(state, local_day(now))
    return award_streak_badges(state)


def is_valid_emoji(emoji: str) -> bool:
    return emoji in REACTION_EMOJIS


def toggle_reaction_entries(
    reactions: list[dict], user_id: int, emoji: str, now: datetime
) -> tuple[list[dict], bool]:
    """
    Add or remove one user's reaction.

    Args:
        reactions: Current reaction entries (not modified).
        user_id: Reacting user.
        emoji: Reaction emoji.
        now: Timestamp for a newly added reaction.

    Returns:
        tuple[list[dict], bool]: New reaction list and True if the reaction
            was added, False if it was removed.
    """
    remaining = [
        entry
        for entry in reactions
        if not (entry["user_id"] == user_id and entry["emoji"] == emoji)
    ]
    if len(remaining) < len(reactions):
        return remaining, False
    added = {"emoji": emoji, "user_id": user_id, "created_at": now.isoformat()}
    return [*reactions, added], True


def aggregate_reactions(reactions: list[dict]) -> dict[str, dict]:
    """
    Summarize reactions per emoji.

    Returns:
        dict[str, dict]: {emoji: {"count": int, "users": [user_id, ...]}} in
            first-reaction order.
    """
    counts: dict[str, dict] = {}
    for entry in reactions:
        summary = counts.setdefault(entry["emoji"], {"count": 0, "users": []})
        summary["count"] += 1
        summary["users"].append(entry["user_id"])
    return counts
