import pytest
from pydantic import ValidationError

from globalchat.chat_settings import ChatSettingsUpdate, chat_settings_defaults
from globalchat.config import Settings


class TestChatSettingsUpdate:
    def test_only_provided_fields_are_dumped(self):
        update = ChatSettingsUpdate(slow_mode_seconds=10, allow_reactions=False)

        assert update.model_dump(exclude_unset=True) == {
            "slow_mode_seconds": 10,
            "allow_reactions": False,
        }

    @pytest.mark.parametrize("value", [0, 300])
    def test_slow_mode_bounds_accepted(self, value):
        assert ChatSettingsUpdate(slow_mode_seconds=value).slow_mode_seconds == value

    @pytest.mark.parametrize(
        "fields",
        [
            {"slow_mode_seconds": -1},
            {"slow_mode_seconds": 301},
            {"max_message_length": 49},
            {"max_message_length": 2001},
            {"max_duplicate_check": 0},
            {"max_duplicate_check": 11},
        ],
    )
    def test_out_of_range_rejected(self, fields):
        with pytest.raises(ValidationError):
            ChatSettingsUpdate(**fields)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            ChatSettingsUpdate(theme="dark")

    def test_explicit_null_rejected(self):
        with pytest.raises(ValidationError):
            ChatSettingsUpdate(allow_replies=None)


class TestChatSettingsDefaults:
    def test_uses_configured_defaults(self):
        config = Settings(
            _env_file=None,
            default_slow_mode_seconds=5,
            default_max_message_length=100,
            default_allow_mentions=False,
        )

        defaults = chat_settings_defaults(config)

        assert defaults["slow_mode_seconds"] == 5
        assert defaults["max_message_length"] == 100
        assert defaults["allow_mentions"] is False
        assert defaults["max_duplicate_check"] == config.default_max_duplicate_check
