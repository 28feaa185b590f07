"""
Database service for the global chat service.

This module is the repository layer between the moderation engine and
SQLite. It exposes message, user-state and settings operations, plus
per-record locks so read-modify-write sequences on one message or one
user state are serialized across threads.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import func, update
from sqlmodel import Session, SQLModel, col, create_engine, select

from globalchat.database.models import ChatMessage, ChatSettings, UserChatState

logger = logging.getLogger(__name__)

# Columns find_messages() may sort by
SORTABLE_COLUMNS = {
    "created_at": ChatMessage.created_at,
    "updated_at": ChatMessage.updated_at,
    "pinned_at": ChatMessage.pinned_at,
}


@dataclass
class MessageFilter:
    """
    Criteria for message queries. Unset fields do not constrain the query.

    Attributes:
        user_id: Only messages from this author.
        is_deleted: Match the soft-delete flag.
        is_pinned: Match the pin flag.
        search: Case-insensitive substring of the message text.
        created_before: created_at strictly earlier than this instant.
        created_after: created_at strictly later than this instant.
        created_from: created_at at or after this instant.
        created_to: created_at at or before this instant.
        exclude_id: Skip the message with this ID.
    """

    user_id: int | None = None
    is_deleted: bool | None = None
    is_pinned: bool | None = None
    search: str | None = None
    created_before: datetime | None = None
    created_after: datetime | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    exclude_id: int | None = None

    def conditions(self) -> list:
        clauses = []
        if self.user_id is not None:
            clauses.append(ChatMessage.user_id == self.user_id)
        if self.is_deleted is not None:
            clauses.append(ChatMessage.is_deleted == self.is_deleted)
        if self.is_pinned is not None:
            clauses.append(ChatMessage.is_pinned == self.is_pinned)
        if self.search:
            clauses.append(col(ChatMessage.text).icontains(self.search, autoescape=True))
        if self.created_before is not None:
            clauses.append(ChatMessage.created_at < _to_db_time(self.created_before))
        if self.created_after is not None:
            clauses.append(ChatMessage.created_at > _to_db_time(self.created_after))
        if self.created_from is not None:
            clauses.append(ChatMessage.created_at >= _to_db_time(self.created_from))
        if self.created_to is not None:
            clauses.append(ChatMessage.created_at <= _to_db_time(self.created_to))
        if self.exclude_id is not None:
            clauses.append(ChatMessage.id != self.exclude_id)
        return clauses


def _to_db_time(value: datetime) -> datetime:
    # SQLite stores naive datetimes; compare in UTC
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


class RecordLocks:
    """
    Per-key locks for serializing read-modify-write sequences.

    A lock exists only while someone holds or waits for it, so the registry
    does not grow with the number of records ever touched.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[object, list] = {}

    @contextmanager
    def hold(self, key: object) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class DatabaseService:
    """
    Repository for chat messages, user chat states and chat settings.

    Each public method opens its own session and commits before returning.
    Returned records are detached; pass them back to the matching save_*
    method to persist changes.
    """

    def __init__(self, database_path: str) -> None:
        """
        Create the engine and tables, creating parent directories if needed.

        Args:
            database_path: Path to the SQLite database file.
        """
        path = Path(database_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(self._engine)
        self._locks = RecordLocks()
        logger.info(f"Database initialized at {path}")

    # Locks

    @contextmanager
    def message_lock(self, message_id: int) -> Iterator[None]:
        """Serialize read-modify-write sequences on one message."""
        with self._locks.hold(("message", message_id)):
            yield

    @contextmanager
    def user_state_lock(self, user_id: int) -> Iterator[None]:
        """Serialize read-modify-write sequences on one user's state."""
        with self._locks.hold(("user_state", user_id)):
            yield

    @contextmanager
    def settings_lock(self) -> Iterator[None]:
        """Serialize read-modify-write sequences on the settings row."""
        with self._locks.hold(("settings",)):
            yield

    # Messages

    def create_message(self, message: ChatMessage) -> ChatMessage:
        with Session(self._engine) as session:
            session.add(message)
            session.commit()
            session.refresh(message)
            return message

    def get_message(self, message_id: int) -> ChatMessage | None:
        with Session(self._engine) as session:
            return session.get(ChatMessage, message_id)

    def find_one_message(
        self,
        message_filter: MessageFilter,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> ChatMessage | None:
        results = self.find_messages(
            message_filter, sort_by=sort_by, descending=descending, limit=1
        )
        return results[0] if results else None

    def find_messages(
        self,
        message_filter: MessageFilter,
        sort_by: str = "created_at",
        descending: bool = True,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[ChatMessage]:
        """
        Query messages matching a filter.

        Args:
            message_filter: Criteria to match.
            sort_by: One of created_at, updated_at, pinned_at.
            descending: Sort newest first when True.
            limit: Maximum number of rows (None for no limit).
            skip: Number of rows to skip.

        Returns:
            list[ChatMessage]: Matching messages in the requested order.

        Raises:
            ValueError: If sort_by is not a sortable column.
        """
        column = SORTABLE_COLUMNS.get(sort_by)
        if column is None:
            raise ValueError(f"Cannot sort messages by {sort_by!r}")

        order = col(column).desc() if descending else col(column).asc()
        tiebreak = col(ChatMessage.id).desc() if descending else col(ChatMessage.id).asc()
        stmt = (
            select(ChatMessage)
            .where(*message_filter.conditions())
            .order_by(order, tiebreak)
            .offset(skip)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        with Session(self._engine) as session:
            return list(session.exec(stmt).all())

    def count_messages(self, message_filter: MessageFilter) -> int:
        stmt = select(func.count()).select_from(ChatMessage).where(*message_filter.conditions())
        with Session(self._engine) as session:
            return session.exec(stmt).one()

    def update_messages(self, message_filter: MessageFilter, **patch) -> int:
        """
        Apply the same field values to every message matching a filter.

        Args:
            message_filter: Criteria to match.
            **patch: Column values to set.

        Returns:
            int: Number of updated rows.
        """
        patch.setdefault("updated_at", datetime.now(UTC))
        stmt = update(ChatMessage).where(*message_filter.conditions()).values(**patch)
        with Session(self._engine) as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount

    def save_message(self, message: ChatMessage) -> ChatMessage:
        message.updated_at = datetime.now(UTC)
        with Session(self._engine) as session:
            session.add(message)
            session.commit()
            session.refresh(message)
            return message

    def pin_message_exclusive(
        self, message_id: int, admin_id: int, pinned_at: datetime
    ) -> ChatMessage | None:
        """
        Pin one message and unpin every other pinned message in one transaction.

        Args:
            message_id: Message to pin.
            admin_id: Admin performing the pin.
            pinned_at: Pin timestamp.

        Returns:
            ChatMessage | None: The pinned message, or None if it does not
                exist or is soft-deleted (nothing is changed in that case).
        """
        with Session(self._engine) as session:
            message = session.get(ChatMessage, message_id)
            if message is None or message.is_deleted:
                return None

            others = MessageFilter(is_pinned=True, exclude_id=message_id)
            cleared = session.execute(
                update(ChatMessage)
                .where(*others.conditions())
                .values(is_pinned=False, pinned_at=None, pinned_by=None, updated_at=pinned_at)
            ).rowcount

            message.is_pinned = True
            message.pinned_at = pinned_at
            message.pinned_by = admin_id
            message.updated_at = pinned_at
            session.add(message)
            session.commit()
            session.refresh(message)

        if cleared:
            logger.info(f"Unpinned {cleared} message(s) while pinning message_id={message_id}")
        return message

    def record_sent_message(self, message: ChatMessage, state: UserChatState) -> ChatMessage:
        """
        Persist a new message and the sender's updated state in one transaction.

        Either both rows are written or neither is.

        Args:
            message: New message to insert.
            state: Sender state after the send was recorded.

        Returns:
            ChatMessage: The inserted message with its ID.
        """
        state.updated_at = datetime.now(UTC)
        with Session(self._engine) as session:
            session.add(message)
            session.add(state)
            session.commit()
            session.refresh(message)
            session.refresh(state)
            return message

    # User states

    def get_user_state(self, user_id: int) -> UserChatState | None:
        with Session(self._engine) as session:
            stmt = select(UserChatState).where(UserChatState.user_id == user_id)
            return session.exec(stmt).first()

    def create_user_state(self, user_id: int) -> UserChatState:
        """
        Insert a fresh state record for a user.

        Raises:
            ValueError: If the user already has a state record.
        """
        if self.get_user_state(user_id) is not None:
            raise ValueError(f"User state already exists for user_id={user_id}")
        state = UserChatState(user_id=user_id)
        with Session(self._engine) as session:
            session.add(state)
            session.commit()
            session.refresh(state)
            return state

    def save_user_state(self, state: UserChatState) -> UserChatState:
        state.updated_at = datetime.now(UTC)
        with Session(self._engine) as session:
            session.add(state)
            session.commit()
            session.refresh(state)
            return state

    # Settings

    def get_or_create_settings(self, **defaults) -> ChatSettings:
        """
        Return the chat settings row, creating it on first read.

        Args:
            **defaults: Field values used only when the row is created.

        Returns:
            ChatSettings: The singleton settings record.
        """
        with Session(self._engine) as session:
            settings = session.exec(select(ChatSettings).order_by(col(ChatSettings.id))).first()
            if settings is None:
                settings = ChatSettings(**defaults)
                session.add(settings)
                session.commit()
                session.refresh(settings)
                logger.info("Created default chat settings")
            return settings

    def save_settings(self, settings: ChatSettings) -> ChatSettings:
        settings.updated_at = datetime.now(UTC)
        with Session(self._engine) as session:
            session.add(settings)
            session.commit()
            session.refresh(settings)
            return settings


# Module-level singleton
_database: DatabaseService | None = None


def init_database(database_path: str) -> DatabaseService:
    """
    Initialize the global database service singleton.

    Must be called once at application startup.

    Args:
        database_path: Path to the SQLite database file.

    Returns:
        DatabaseService: Initialized service.
    """
    global _database
    _database = DatabaseService(database_path)
    return _database


def get_database() -> DatabaseService:
    """
    Get the global database service singleton.

    Raises:
        RuntimeError: If init_database() hasn't been called.
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _database


def reset_database() -> None:
    """Reset the database service singleton (for testing)."""
    global _database
    if _database is not None:
        _database._engine.dispose()
    _database = None
