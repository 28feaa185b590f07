import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from globalchat.config import Settings
from globalchat.constants import (
    DEFAULT_MODERATION_REASON,
    INVALID_DURATION,
    INVALID_EMOJI,
    INVALID_SETTINGS,
    MESSAGE_NOT_FOUND,
    REACTIONS_DISABLED,
    USER_STATE_NOT_FOUND,
)
from globalchat.database.service import MessageFilter, get_database, init_database, reset_database
from globalchat.errors import ChatNotFoundError, ChatValidationError, SendDenied
from globalchat.services.broadcast import BroadcastGateway
from globalchat.services.engine import ChatIdentity, ModerationEngine

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
ANA = ChatIdentity(user_id=1, display_name="Ana")
ADMIN_ID = 99


@pytest.fixture
def temp_db():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        init_database(str(db_path))
        yield db_path
        reset_database()


@pytest.fixture
def gateway():
    mock_gateway = MagicMock(spec=BroadcastGateway)
    mock_gateway.publish_to_room = AsyncMock()
    mock_gateway.publish_to_user = AsyncMock()
    return mock_gateway


@pytest.fixture
def engine(temp_db, gateway) -> ModerationEngine:
    config = Settings(_env_file=None, default_slow_mode_seconds=0)
    return ModerationEngine(get_database(), gateway, config=config, clock=lambda: T0)


def room_events(gateway) -> list[str]:
    return [call.args[0] for call in gateway.publish_to_room.call_args_list]


class TestToggleReaction:
    @pytest.mark.asyncio
    async def test_add_then_remove(self, engine, gateway):
        message = await engine.send_message(ANA, "nice")

        added = await engine.toggle_reaction(message.id, user_id=2, emoji="👍")
        removed = await engine.toggle_reaction(message.id, user_id=2, emoji="👍")

        assert added == {"👍": {"count": 1, "users": [2]}}
        assert removed == {}
        assert get_database().get_message(message.id).reactions == []

    @pytest.mark.asyncio
    async def test_publishes_aggregated_counts(self, engine, gateway):
        message = await engine.send_message(ANA, "nice")
        await engine.toggle_reaction(message.id, user_id=2, emoji="🔥")
        await engine.toggle_reaction(message.id, user_id=3, emoji="🔥")

        event, payload = gateway.publish_to_room.call_args.args
        assert event == "message-updated"
        assert payload == {"messageId": message.id, "reactions": {"🔥": {"count": 2, "users": [2, 3]}}}

    @pytest.mark.asyncio
    async def test_invalid_emoji(self, engine):
        message = await engine.send_message(ANA, "nice")

        with pytest.raises(ChatValidationError) as exc_info:
            await engine.toggle_reaction(message.id, user_id=2, emoji="💩")

        assert exc_info.value.code == INVALID_EMOJI

    @pytest.mark.asyncio
    async def test_reactions_disabled(self, engine):
        message = await engine.send_message(ANA, "nice")
        await engine.update_settings(ADMIN_ID, allow_reactions=False)

        with pytest.raises(SendDenied) as exc_info:
            await engine.toggle_reaction(message.id, user_id=2, emoji="👍")

        assert exc_info.value.code == REACTIONS_DISABLED

    @pytest.mark.asyncio
    async def test_missing_or_deleted_message(self, engine):
        message = await engine.send_message(ANA, "nice")
        await engine.delete_message(message.id, ADMIN_ID)

        for message_id in (message.id, 404):
            with pytest.raises(ChatNotFoundError) as exc_info:
                await engine.toggle_reaction(message_id, user_id=2, emoji="👍")
            assert exc_info.value.code == MESSAGE_NOT_FOUND


class TestDeleteMessage:
    @pytest.mark.asyncio
    async def test_soft_delete(self, engine, gateway):
        message = await engine.send_message(ANA, "oops")

        deleted = await engine.delete_message(message.id, ADMIN_ID)

        assert deleted.is_deleted is True
        assert deleted.deleted_by == ADMIN_ID
        assert get_database().get_message(message.id) is not None
        event, payload = gateway.publish_to_room.call_args.args
        assert (event, payload) == ("message-deleted", {"messageId": message.id})

    @pytest.mark.asyncio
    async def test_delete_twice(self, engine):
        message = await engine.send_message(ANA, "oops")
        await engine.delete_message(message.id, ADMIN_ID)

        with pytest.raises(ChatNotFoundError):
            await engine.delete_message(message.id, ADMIN_ID)

    @pytest.mark.asyncio
    async def test_deleting_pinned_message_unpins_it(self, engine, gateway):
        message = await engine.send_message(ANA, "announcement")
        await engine.set_pinned(message.id, ADMIN_ID, pin=True)

        deleted = await engine.delete_message(message.id, ADMIN_ID)

        assert deleted.is_pinned is False
        assert await engine.get_pinned_message() is None
        assert room_events(gateway)[-2:] == ["message-deleted", "pinned-message-removed"]


class TestSetPinned:
    @pytest.mark.asyncio
    async def test_pin(self, engine, gateway):
        message = await engine.send_message(ANA, "rules")

        pinned = await engine.set_pinned(message.id, ADMIN_ID, pin=True)

        assert pinned.is_pinned is True
        assert pinned.pinned_by == ADMIN_ID
        event, payload = gateway.publish_to_room.call_args.args
        assert event == "pinned-message"
        assert payload["message"]["id"] == message.id
        assert (await engine.get_pinned_message()).id == message.id

    @pytest.mark.asyncio
    async def test_at_most_one_pinned(self, engine):
        first = await engine.send_message(ANA, "first")
        second = await engine.send_message(ANA, "second")

        await engine.set_pinned(first.id, ADMIN_ID, pin=True)
        await engine.set_pinned(second.id, ADMIN_ID, pin=True)

        db = get_database()
        assert db.count_messages(MessageFilter(is_pinned=True)) == 1
        assert db.get_message(first.id).is_pinned is False
        assert (await engine.get_pinned_message()).id == second.id

    @pytest.mark.asyncio
    async def test_unpin(self, engine, gateway):
        message = await engine.send_message(ANA, "rules")
        await engine.set_pinned(message.id, ADMIN_ID, pin=True)

        unpinned = await engine.set_pinned(message.id, ADMIN_ID, pin=False)

        assert unpinned.is_pinned is False
        assert unpinned.pinned_at is None
        assert room_events(gateway)[-1] == "pinned-message-removed"

    @pytest.mark.asyncio
    async def test_unpin_message_that_is_not_pinned(self, engine, gateway):
        other = await engine.send_message(ANA, "old news")
        current = await engine.send_message(ANA, "rules")
        await engine.set_pinned(current.id, ADMIN_ID, pin=True)

        result = await engine.set_pinned(other.id, ADMIN_ID, pin=False)

        assert result.is_pinned is False
        assert (await engine.get_pinned_message()).id == current.id
        assert "pinned-message-removed" not in room_events(gateway)

    @pytest.mark.asyncio
    async def test_pin_deleted_message(self, engine):
        message = await engine.send_message(ANA, "rules")
        await engine.delete_message(message.id, ADMIN_ID)

        with pytest.raises(ChatNotFoundError):
            await engine.set_pinned(message.id, ADMIN_ID, pin=True)


class TestMuteAndBan:
    @pytest.mark.asyncio
    async def test_mute_creates_state(self, engine):
        state = await engine.mute_user(5, ADMIN_ID, duration_minutes=10, reason="spam")

        assert state.is_muted is True
        assert state.muted_by == ADMIN_ID
        assert state.mute_reason == "spam"
        loaded = get_database().get_user_state(5)
        assert loaded.muted_until.replace(tzinfo=UTC) == T0 + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_default_reason(self, engine):
        state = await engine.ban_user(5, ADMIN_ID)

        assert state.ban_reason == DEFAULT_MODERATION_REASON
        assert state.banned_until is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, -5])
    async def test_invalid_duration(self, engine, duration):
        with pytest.raises(ChatValidationError) as exc_info:
            await engine.mute_user(5, ADMIN_ID, duration_minutes=duration)

        assert exc_info.value.code == INVALID_DURATION
        assert get_database().get_user_state(5) is None

    @pytest.mark.asyncio
    async def test_unmute_and_unban(self, engine):
        await engine.mute_user(5, ADMIN_ID)
        await engine.ban_user(5, ADMIN_ID)

        await engine.unmute_user(5)
        state = await engine.unban_user(5)

        assert state.is_muted is False
        assert state.mute_reason is None
        assert state.is_banned is False
        assert state.banned_by is None
        message = await engine.send_message(ChatIdentity(5, "Five"), "thanks")
        assert message.id is not None

    @pytest.mark.asyncio
    async def test_unban_unknown_user(self, engine):
        with pytest.raises(ChatNotFoundError) as exc_info:
            await engine.unban_user(404)

        assert exc_info.value.code == USER_STATE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_moderation_publishes_nothing(self, engine, gateway):
        await engine.mute_user(5, ADMIN_ID)
        await engine.unmute_user(5)

        gateway.publish_to_room.assert_not_awaited()


class TestUpdateSettings:
    @pytest.mark.asyncio
    async def test_partial_update(self, engine, gateway):
        settings = await engine.update_settings(ADMIN_ID, slow_mode_seconds=15, allow_mentions=False)

        assert settings.slow_mode_seconds == 15
        assert settings.allow_mentions is False
        assert settings.max_message_length == 500
        assert settings.updated_by == ADMIN_ID
        event, payload = gateway.publish_to_room.call_args.args
        assert event == "settings-updated"
        assert payload["settings"]["slowModeSeconds"] == 15
        assert payload["settings"]["allowMentions"] is False

    @pytest.mark.asyncio
    async def test_settings_persist(self, engine):
        await engine.update_settings(ADMIN_ID, max_duplicate_check=5)

        assert (await engine.get_chat_settings()).max_duplicate_check == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fields",
        [{"slow_mode_seconds": 301}, {"max_message_length": 10}, {"color": "red"}],
    )
    async def test_invalid_update_rejected(self, engine, gateway, fields):
        with pytest.raises(ChatValidationError) as exc_info:
            await engine.update_settings(ADMIN_ID, **fields)

        assert exc_info.value.code == INVALID_SETTINGS
        assert exc_info.value.message.startswith("Invalid chat settings:")
        gateway.publish_to_room.assert_not_awaited()
        assert (await engine.get_chat_settings()).slow_mode_seconds == 0
