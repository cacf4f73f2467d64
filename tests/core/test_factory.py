import pytest
from typing import Any, Dict, List

from api_switchboard.core.errors import InitializationError
from api_switchboard.core.factory import SinkFactory, resolve_env
from api_switchboard.core.sink import BaseSink, SinkResult
from api_switchboard.core.types import SinkType
from api_switchboard.sinks import SpreadsheetSink, WebhookSink


class NullSink(BaseSink):
    """Sink that accepts and discards everything."""

    async def initialize(self) -> None:
        self._is_initialized = True

    async def write(self, data: List[Dict[str, Any]]) -> SinkResult:
        return SinkResult(success=True)

    async def close(self) -> None:
        pass


class TestSinkFactory:
    """Test suite for SinkFactory."""

    def setup_method(self):
        """Remember the registry so tests can register freely."""
        self._saved = dict(SinkFactory._sink_handlers)

    def teardown_method(self):
        SinkFactory._sink_handlers = self._saved

    def test_builtin_sinks_registered(self):
        assert SinkFactory.registered_types() == [SinkType.SPREADSHEET, SinkType.WEBHOOK]

    def test_register_is_case_insensitive(self):
        SinkFactory.register_sink("NULL", NullSink)

        assert isinstance(SinkFactory.create_sink("null"), NullSink)

    def test_create_spreadsheet_sink(self):
        sink = SinkFactory.create_sink(
            SinkType.SPREADSHEET,
            {"web_app_url": "https://script.example.com/exec", "sheet_name": "API_Data"},
            {"sheet_name": "Orders"}
        )

        assert isinstance(sink, SpreadsheetSink)
        assert sink.url == "https://script.example.com/exec"
        assert sink.sheet_name == "Orders"

    def test_create_webhook_sink_with_env_override(self, monkeypatch):
        monkeypatch.setenv("TEST_HOOK_URL", "https://hooks.example.com/abc")

        sink = SinkFactory.create_sink(SinkType.WEBHOOK, {}, {"url": "${env:TEST_HOOK_URL}"})

        assert isinstance(sink, WebhookSink)
        assert sink.url == "https://hooks.example.com/abc"

    def test_disabled_sink_refused(self):
        with pytest.raises(InitializationError, match="Sink webhook is disabled"):
            SinkFactory.create_sink(SinkType.WEBHOOK, {"enabled": False, "url": "https://h.io"})

    def test_overrides_cannot_enable_sink(self):
        with pytest.raises(InitializationError, match="disabled"):
            SinkFactory.create_sink(SinkType.WEBHOOK, {"enabled": False}, {"enabled": True})

    def test_enabled_flag_not_passed_to_sink(self):
        sink = SinkFactory.create_sink(SinkType.WEBHOOK, {"enabled": True, "url": "https://h.io"})

        assert "enabled" not in sink.config.config
        assert sink.config.enabled

    def test_unknown_sink_type(self):
        with pytest.raises(InitializationError, match="Unsupported sink type"):
            SinkFactory.create_sink("ftp", {})


class TestResolveEnv:
    """Test suite for environment references in config values."""

    def test_nested_values(self, monkeypatch):
        monkeypatch.setenv("TEST_TOKEN", "s3cret")

        resolved = resolve_env({"a": ["${env:TEST_TOKEN}", 1], "b": {"c": "${env:TEST_TOKEN}"}})

        assert resolved == {"a": ["s3cret", 1], "b": {"c": "s3cret"}}

    def test_missing_without_default(self, monkeypatch):
        monkeypatch.delenv("TEST_NOT_SET", raising=False)

        assert resolve_env("${env:TEST_NOT_SET}") is None
        assert resolve_env("${env:TEST_NOT_SET:}") == ""

    def test_plain_strings_untouched(self):
        assert resolve_env("prefix ${env:X}") == "prefix ${env:X}"
