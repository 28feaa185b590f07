"""
Main entry point for the global chat service.

This module wires the moderation engine together: it configures logging,
initializes the SQLite database and picks a broadcast gateway. When a
Telegram bot token and room chat are configured, events are mirrored to
Telegram; otherwise they stay in-process.
"""

import asyncio
import logging

import logfire
from telegram import Bot

from globalchat.config import Settings, get_settings
from globalchat.database.service import init_database
from globalchat.services.broadcast import BroadcastGateway, LocalBroadcastGateway
from globalchat.services.engine import ModerationEngine
from globalchat.services.telegram_gateway import TelegramBroadcastGateway


def configure_logging() -> None:
    """
    Configure logging with Logfire integration.

    - Console output always; Logfire only if enabled AND a token is set
    - Level taken from LOG_LEVEL
    - Suppresses verbose HTTP request logs from httpx/httpcore libraries
    """
    # Configure basic logging FIRST to capture Settings initialization logs
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO,
        force=True,
    )

    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    send_to_logfire = settings.logfire_enabled and settings.logfire_token is not None

    logfire.configure(
        token=settings.logfire_token,
        service_name=settings.logfire_service_name,
        environment=settings.logfire_environment,
        send_to_logfire=send_to_logfire,
        console=logfire.ConsoleOptions(
            colors="auto",
            include_timestamps=True,
            min_log_level="info",
        ),
        inspect_arguments=False,
    )

    # Reconfigure logging with Logfire handler
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=level,
        handlers=[logfire.LogfireLoggingHandler()],
        force=True,
    )

    # python-telegram-bot logs every HTTP request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if send_to_logfire:
        logger.info(f"Logfire enabled - sending logs to {settings.logfire_environment}")
    else:
        logger.info("Logfire disabled - console output only")


logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> BroadcastGateway:
    """
    Pick the broadcast gateway for the current configuration.

    Args:
        settings: Application settings.

    Returns:
        BroadcastGateway: Telegram mirror if configured, in-process otherwise.
    """
    if settings.telegram_gateway_enabled:
        logger.info(f"Mirroring chat events to Telegram chat {settings.telegram_room_chat_id}")
        return TelegramBroadcastGateway(
            Bot(settings.telegram_bot_token),
            room_chat_id=settings.telegram_room_chat_id,
            room_topic_id=settings.telegram_room_topic_id,
        )
    logger.info("Telegram mirror not configured - using in-process broadcast")
    return LocalBroadcastGateway()


def build_engine(settings: Settings | None = None) -> ModerationEngine:
    """
    Initialize the database and create the moderation engine.

    Args:
        settings: Application settings; defaults to get_settings().

    Returns:
        ModerationEngine: Ready-to-use engine.
    """
    settings = settings or get_settings()
    db = init_database(settings.database_path)
    return ModerationEngine(db, build_gateway(settings), config=settings)


async def _startup_check(engine: ModerationEngine) -> None:
    chat_settings = await engine.get_chat_settings()
    pinned = await engine.get_pinned_message()
    logger.info(
        f"Chat ready: slow mode {chat_settings.slow_mode_seconds}s, "
        f"max length {chat_settings.max_message_length}, "
        f"pinned message {pinned.id if pinned else 'none'}"
    )


def main() -> None:
    """
    Configure logging, initialize storage and report the chat state.

    Transport layers (HTTP, WebSocket) embed the engine via build_engine().
    """
    configure_logging()
    engine = build_engine()
    asyncio.run(_startup_check(engine))


if __name__ == "__main__":
    main()
