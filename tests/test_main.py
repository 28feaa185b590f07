import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from globalchat.config import Settings
from globalchat.database.service import get_database, reset_database
from globalchat.main import build_engine, build_gateway
from globalchat.services.broadcast import LocalBroadcastGateway
from globalchat.services.engine import ModerationEngine
from globalchat.services.telegram_gateway import TelegramBroadcastGateway


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield str(Path(tmpdir) / "chat.db")
        reset_database()


class TestBuildGateway:
    def test_local_without_telegram(self, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        monkeypatch.delenv("TELEGRAM_ROOM_CHAT_ID", raising=False)

        assert isinstance(build_gateway(Settings(_env_file=None)), LocalBroadcastGateway)

    def test_telegram_when_configured(self):
        settings = Settings(
            _env_file=None,
            telegram_bot_token="123:abc",
            telegram_room_chat_id=-100123,
            telegram_room_topic_id=5,
        )

        with patch("globalchat.main.Bot") as mock_bot_cls:
            gateway = build_gateway(settings)

        assert isinstance(gateway, TelegramBroadcastGateway)
        mock_bot_cls.assert_called_once_with("123:abc")


class TestBuildEngine:
    def test_initializes_database(self, db_path, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        monkeypatch.delenv("TELEGRAM_ROOM_CHAT_ID", raising=False)

        engine = build_engine(Settings(_env_file=None, database_path=db_path))

        assert isinstance(engine, ModerationEngine)
        assert Path(db_path).exists()
        assert get_database() is not None
