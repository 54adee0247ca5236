"""
Tests for settings loading and log formatting.
"""
import json
import logging

from invest_streaming.config import Settings
from invest_streaming.utils.logging import ColoredFormatter, JSONFormatter, get_logger


class TestSettings:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("INVEST_STREAMING_URL", "ws://localhost:9000/ws")
        monkeypatch.setenv("INVEST_SECRET_TOKEN", "  t0ken \n")
        monkeypatch.setenv("INVEST_PING_INTERVAL", "5")

        settings = Settings(_env_file=None)

        assert settings.INVEST_STREAMING_URL == "ws://localhost:9000/ws"
        assert settings.INVEST_SECRET_TOKEN == "t0ken"
        assert settings.INVEST_PING_INTERVAL == 5.0

    def test_boolean_flags_tolerate_whitespace(self, monkeypatch):
        monkeypatch.setenv("LOG_JSON", " true ")
        assert Settings(_env_file=None).LOG_JSON is True

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        settings = Settings(_env_file=None)
        assert settings.is_production is True


class TestFormatters:
    def _record(self, msg="hello"):
        return logging.LogRecord("invest-streaming.test", logging.WARNING, __file__, 1, msg, None, None)

    def test_json_formatter(self):
        record = self._record()
        record.extra_data = {"figi": "X"}

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "invest-streaming.test"
        assert data["message"] == "hello"
        assert data["figi"] == "X"
        assert data["timestamp"].endswith("Z")

    def test_colored_formatter_restores_levelname(self):
        record = self._record()
        output = ColoredFormatter("%(levelname)s %(message)s").format(record)

        assert "\033[33m" in output
        assert record.levelname == "WARNING"

    def test_get_logger_namespace(self):
        assert get_logger("upstream.queue").name == "invest-streaming.upstream.queue"
