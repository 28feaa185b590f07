"""
Admin-editable chat settings.

ChatSettingsUpdate validates a partial settings change before it is applied
to the ChatSettings row. Only fields the admin actually provided are set;
everything else keeps its current value.
"""

from pydantic import BaseModel, ConfigDict, field_validator

from globalchat.config import Settings


class ChatSettingsUpdate(BaseModel):
    """
    Partial update of the chat policy.

    Every field is optional; use model_dump(exclude_unset=True) to get
    only the provided values.
    """

    model_config = ConfigDict(extra="forbid")

    slow_mode_seconds: int | None = None
    max_message_length: int | None = None
    max_duplicate_check: int | None = None
    allow_reactions: bool | None = None
    allow_replies: bool | None = None
    allow_mentions: bool | None = None

    @field_validator("slow_mode_seconds")
    @classmethod
    def slow_mode_must_be_in_range(cls, v: int | None) -> int | None:
        if v is not None and not (0 <= v <= 300):
            raise ValueError("slow_mode_seconds must be between 0 and 300 seconds")
        return v

    @field_validator("max_message_length")
    @classmethod
    def max_length_must_be_in_range(cls, v: int | None) -> int | None:
        if v is not None and not (50 <= v <= 2000):
            raise ValueError("max_message_length must be between 50 and 2000")
        return v

    @field_validator("max_duplicate_check")
    @classmethod
    def duplicate_check_must_be_in_range(cls, v: int | None) -> int | None:
        if v is not None and not (1 <= v <= 10):
            raise ValueError("max_duplicate_check must be between 1 and 10")
        return v

    @field_validator("*")
    @classmethod
    def provided_values_cannot_be_null(cls, v):
        if v is None:
            raise ValueError("value cannot be null")
        return v


def chat_settings_defaults(config: Settings) -> dict:
    """
    Field values for a freshly created ChatSettings row.

    Args:
        config: Application settings.

    Returns:
        dict: Keyword arguments for ChatSettings.
    """
    return {
        "slow_mode_seconds": config.default_slow_mode_seconds,
        "max_message_length": config.default_max_message_length,
        "max_duplicate_check": config.default_max_duplicate_check,
        "allow_reactions": config.default_allow_reactions,
        "allow_replies": config.default_allow_replies,
        "allow_mentions": config.default_allow_mentions,
    }
