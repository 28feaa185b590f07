"""
Configuration module for the global chat service.

This module handles loading and validating configuration from environment
variables using Pydantic Settings. It supports multiple environments
(production, staging) via the CHAT_ENV environment variable.

The values here are process-level configuration. The moderation policy that
admins tune at runtime (slow mode, duplicate threshold, toggles) lives in the
ChatSettings table; the ``default_*`` fields below only seed that row the
first time it is read.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def get_env_file() -> str | None:
    """
    Determine which .env file to load based on CHAT_ENV environment variable.

    Returns:
        str | None: Path to the environment file if it exists, None otherwise.
            - "production" or default -> ".env" (if exists)
            - "staging" -> ".env.staging" (if exists)
    """
    env = os.getenv("CHAT_ENV", "production")
    env_files = {
        "production": ".env",
        "staging": ".env.staging",
    }
    env_file = env_files.get(env, ".env")

    if Path(env_file).exists():
        logger.debug(f"Loading configuration from: {env_file}")
        return env_file
    else:
        logger.debug(f"No .env file found at {env_file}, loading from environment variables")
        return None


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        database_path: Path to SQLite database file.
        default_slow_mode_seconds: Initial slow-mode interval for a fresh settings row.
        default_max_message_length: Initial maximum message length.
        default_max_duplicate_check: Initial duplicate threshold.
        default_allow_reactions: Initial reactions toggle.
        default_allow_replies: Initial replies toggle.
        default_allow_mentions: Initial mentions toggle.
        history_max_page_size: Upper bound for paginated history queries.
        telegram_bot_token: Bot token used by the Telegram broadcast gateway (optional).
        telegram_room_chat_id: Chat that mirrors room events (optional).
        telegram_room_topic_id: Forum topic inside the room chat (optional).
        logfire_token: Logfire API token (optional, required for production logging).
        logfire_service_name: Service name for Logfire traces.
        logfire_environment: Environment name (production/staging).
        logfire_enabled: Enable/disable Logfire logging.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    database_path: str = "data/globalchat.db"
    default_slow_mode_seconds: int = 30
    default_max_message_length: int = 500
    default_max_duplicate_check: int = 2
    default_allow_reactions: bool = True
    default_allow_replies: bool = True
    default_allow_mentions: bool = True
    history_max_page_size: int = 100
    telegram_bot_token: str | None = None
    telegram_room_chat_id: int | None = None
    telegram_room_topic_id: int | None = None
    logfire_token: str | None = None
    logfire_service_name: str = "globalchat"
    logfire_environment: str = "production"
    logfire_enabled: bool = True
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
    )

    def model_post_init(self, __context):
        """Validate and log non-sensitive configuration values after initialization."""
        if not (0 <= self.default_slow_mode_seconds <= 300):
            raise ValueError("default_slow_mode_seconds must be between 0 and 300 seconds")
        if not (50 <= self.default_max_message_length <= 2000):
            raise ValueError("default_max_message_length must be between 50 and 2000")
        if not (1 <= self.default_max_duplicate_check <= 10):
            raise ValueError("default_max_duplicate_check must be between 1 and 10")
        if self.history_max_page_size <= 0:
            raise ValueError("history_max_page_size must be greater than 0")

        # Set logfire_environment based on CHAT_ENV if not explicitly set
        env = os.getenv("CHAT_ENV", "production")
        if self.logfire_environment == "production" and env == "staging":
            self.logfire_environment = "staging"

        logger.info("Configuration loaded successfully")
        logger.debug(f"database_path: {self.database_path}")
        logger.debug(f"default_slow_mode_seconds: {self.default_slow_mode_seconds}")
        logger.debug(f"default_max_message_length: {self.default_max_message_length}")
        logger.debug(f"default_max_duplicate_check: {self.default_max_duplicate_check}")
        logger.debug(f"history_max_page_size: {self.history_max_page_size}")
        if self.telegram_bot_token:
            logger.debug(f"telegram_bot_token: {'***' + self.telegram_bot_token[-4:]}")  # Mask sensitive token
        logger.debug(f"telegram_room_chat_id: {self.telegram_room_chat_id}")
        logger.debug(f"logfire_enabled: {self.logfire_enabled}")
        logger.debug(f"logfire_environment: {self.logfire_environment}")

    @property
    def telegram_gateway_enabled(self) -> bool:
        return self.telegram_bot_token is not None and self.telegram_room_chat_id is not None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.

    Returns:
        Settings: Application configuration instance.
    """
    return Settings()
