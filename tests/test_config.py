"""
Tests for engine configuration from the environment.
"""

import sys
import os
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from auction.config import EngineConfig


class TestEngineConfig:
    """Test EngineConfig defaults and environment overrides"""

    def test_defaults(self, monkeypatch):
        for name in (
            "AUCTION_DB_PATH",
            "AUCTION_DEFAULT_TIMER_SECONDS",
            "AUCTION_STATE_READ_RETRIES",
            "OTEL_EXPORTER_OTLP_ENDPOINT",
            "AUCTION_CONSOLE_TRACES",
        ):
            monkeypatch.delenv(name, raising=False)

        config = EngineConfig.from_env()

        assert config.db_path == Path(".state/auction.db")
        assert config.default_timer_seconds == 43200
        assert config.state_read_retries == 3
        assert config.otlp_endpoint is None
        assert config.console_traces is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("AUCTION_DB_PATH", "/tmp/rooms.db")
        monkeypatch.setenv("AUCTION_DEFAULT_TIMER_SECONDS", "600")
        monkeypatch.setenv("AUCTION_BUSY_TIMEOUT_SECONDS", "1.5")
        monkeypatch.setenv("AUCTION_EXPIRY_CHECK_INTERVAL", "2")
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")
        monkeypatch.setenv("AUCTION_CONSOLE_TRACES", "TRUE")

        config = EngineConfig.from_env()

        assert config.db_path == Path("/tmp/rooms.db")
        assert config.default_timer_seconds == 600
        assert config.busy_timeout_seconds == 1.5
        assert config.expiry_check_interval == 2.0
        assert config.otlp_endpoint == "http://collector:4317"
        assert config.console_traces is True
