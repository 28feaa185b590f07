"""
Database models for the global chat service.

This module defines SQLModel schemas for persisting chat data to SQLite:
the message log, per-user moderation state and the singleton chat
settings row. List-valued fields (mentions, reactions, recent messages,
badges) are stored as JSON columns so each record stays a single
document; code that changes them must assign a new list rather than
mutate in place, otherwise SQLAlchemy will not notice the change.
"""

from datetime import UTC, date, datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class ChatMessage(SQLModel, table=True):
    """
    A message in the global chat room.

    Messages are never physically removed; admins soft-delete them.
    At most one non-deleted message is pinned at any time.

    Attributes:
        id: Primary key (auto-generated).
        user_id: Author user ID (indexed).
        username: Author display name, snapshotted at send time.
        text: Trimmed message text.
        reply_to_message_id: Message this one replies to, if any.
        mentions: User IDs mentioned in the message.
        reactions: Ordered list of {"emoji", "user_id", "created_at"} entries,
            at most one per (user_id, emoji) pair.
        is_deleted: Soft-delete flag.
        deleted_at: When the message was soft-deleted.
        deleted_by: Admin who deleted the message.
        is_pinned: Pin flag.
        pinned_at: When the message was pinned.
        pinned_by: Admin who pinned the message.
        created_at: Send timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "chat_messages"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    username: str
    text: str
    reply_to_message_id: int | None = Field(default=None, index=True)
    mentions: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    reactions: list[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(default=None)
    deleted_by: int | None = Field(default=None)
    is_pinned: bool = Field(default=False, index=True)
    pinned_at: datetime | None = Field(default=None)
    pinned_by: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class UserChatState(SQLModel, table=True):
    """
    Per-user moderation and engagement state.

    Created lazily on a user's first interaction (or when an admin mutes or
    bans them). Mute and ban expiry is evaluated lazily by the send
    permission check; nothing sweeps expired records in the background.

    Attributes:
        id: Primary key (auto-generated).
        user_id: User ID (indexed, unique).
        last_message_at: Timestamp of the last accepted message.
        last_messages: Normalized texts of recent messages, most recent first.
        is_muted: Whether the user is muted.
        muted_until: Mute expiry; None means the mute has no time limit.
        muted_by: Admin who applied the mute.
        mute_reason: Reason given for the mute.
        is_banned: Whether the user is banned.
        banned_until: Ban expiry; None means a permanent ban.
        banned_by: Admin who applied the ban.
        ban_reason: Reason given for the ban.
        chat_streak: Consecutive calendar days with at least one message.
        last_chat_date: Calendar day of the last streak update.
        total_messages: Cumulative accepted message count.
        badges: Earned badges; never revoked.
    """

    __tablename__ = "user_chat_states"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, unique=True)
    last_message_at: datetime | None = Field(default=None)
    last_messages: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_muted: bool = Field(default=False, index=True)
    muted_until: datetime | None = Field(default=None)
    muted_by: int | None = Field(default=None)
    mute_reason: str | None = Field(default=None)
    is_banned: bool = Field(default=False, index=True)
    banned_until: datetime | None = Field(default=None)
    banned_by: int | None = Field(default=None)
    ban_reason: str | None = Field(default=None)
    chat_streak: int = Field(default=0)
    last_chat_date: date | None = Field(default=None)
    total_messages: int = Field(default=0)
    badges: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChatSettings(SQLModel, table=True):
    """
    Tunable chat policy. A single row exists, created with defaults on first read.

    Attributes:
        id: Primary key (auto-generated).
        slow_mode_seconds: Minimum spacing between a user's messages.
        max_message_length: Maximum trimmed message length.
        max_duplicate_check: Repeats of the same text allowed in recent history.
        allow_reactions: Reactions toggle.
        allow_replies: Replies toggle.
        allow_mentions: Mentions toggle.
        updated_by: Admin who last changed the settings.
    """

    __tablename__ = "chat_settings"

    id: int | None = Field(default=None, primary_key=True)
    slow_mode_seconds: int = Field(default=30)
    max_message_length: int = Field(default=500)
    max_duplicate_check: int = Field(default=2)
    allow_reactions: bool = Field(default=True)
    allow_replies: bool = Field(default=True)
    allow_mentions: bool = Field(default=True)
    updated_by: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
