# Tests for settings and logging setup

import io
import json
import logging
from pathlib import Path

import pytest
import structlog

from ciphertalk.core.config import DEFAULT_RELAY_URL, Settings
from ciphertalk.core.logging import configure_logging


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.data_dir == Path("data")
        assert settings.key_db_path == Path("data") / "keys.db"
        assert settings.relay_url == DEFAULT_RELAY_URL
        assert settings.directory_timeout == 10.0
        assert settings.log_level == "INFO"
        assert settings.log_json is False

    def test_overrides(self, tmp_path):
        settings = Settings.from_env({
            "CIPHERTALK_DATA_DIR": str(tmp_path),
            "CIPHERTALK_RELAY_URL": "ws://relay.example:9000/ws",
            "CIPHERTALK_DIRECTORY_TIMEOUT": "2.5",
            "CIPHERTALK_LOG_LEVEL": "debug",
            "CIPHERTALK_LOG_JSON": "true",
        })
        assert settings.key_db_path == tmp_path / "keys.db"
        assert settings.relay_url == "ws://relay.example:9000/ws"
        assert settings.directory_timeout == 2.5
        assert settings.log_level == "DEBUG"
        assert settings.log_json is True

    def test_explicit_key_db(self, tmp_path):
        settings = Settings.from_env({"CIPHERTALK_KEY_DB": str(tmp_path / "k.db")})
        assert settings.key_db_path == tmp_path / "k.db"

    @pytest.mark.parametrize("value", ["soon", "0", "-1"])
    def test_invalid_timeout(self, value):
        with pytest.raises(ValueError):
            Settings.from_env({"CIPHERTALK_DIRECTORY_TIMEOUT": value})

    def test_dotenv_does_not_override(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text(
            "CIPHERTALK_RELAY_URL=ws://from-dotenv/ws\nCIPHERTALK_LOG_LEVEL=WARNING\n"
        )
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CIPHERTALK_LOG_LEVEL", "ERROR")
        monkeypatch.delenv("CIPHERTALK_RELAY_URL", raising=False)

        settings = Settings.from_env()
        assert settings.relay_url == "ws://from-dotenv/ws"
        assert settings.log_level == "ERROR"
        # load_dotenv writes into os.environ; drop it again
        monkeypatch.delenv("CIPHERTALK_RELAY_URL", raising=False)


class TestLogging:
    @pytest.fixture(autouse=True)
    def _restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
        root.setLevel(level)
        structlog.reset_defaults()

    def test_json_lines(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json=True, stream=stream)
        structlog.get_logger("ciphertalk.test").info("session_started", identity="alice")

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "session_started"
        assert record["identity"] == "alice"
        assert record["level"] == "info"

    def test_stdlib_loggers_share_handler(self):
        stream = io.StringIO()
        configure_logging(level="WARNING", json=True, stream=stream)
        logging.getLogger("ciphertalk.e2e").info("hidden")
        logging.getLogger("ciphertalk.e2e").warning("shown %s", "here")

        lines = stream.getvalue().strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event"] == "shown here"

    def test_reconfigure_replaces_handler(self):
        first, second = io.StringIO(), io.StringIO()
        configure_logging(json=True, stream=first)
        configure_logging(json=True, stream=second)
        logging.getLogger("ciphertalk").warning("once")
        assert first.getvalue() == ""
        assert "once" in second.getvalue()
