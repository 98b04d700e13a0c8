"""Tests for configuration, error types, logging and test doubles."""

from __future__ import annotations

import io
import logging
from collections.abc import Iterator

import orjson
import pytest
from pydantic import ValidationError

from seqflow import ErrorCode, ReadableStream, StreamError, StreamException, clear_settings_cache, get_settings
from seqflow.foundation.testing import ManualScheduler
from seqflow.runtime.observability import BoundLogger, ConsoleRenderer, JsonRenderer, log_context


@pytest.fixture(autouse=True)
def fresh_settings() -> Iterator[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────


class TestSettings:
    """Environment-driven settings."""
    
    def test_defaults(self) -> None:
        settings = get_settings()
        assert settings.streams.high_water_mark == 1
        assert settings.streams.iota_tick == 0.0
        assert settings.effective_log_level == settings.logging.level
    
    def test_stream_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEQFLOW_STREAM_HIGH_WATER_MARK", "4")
        clear_settings_cache()
        assert get_settings().streams.high_water_mark == 4
    
    def test_high_water_mark_default_applies_to_new_streams(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEQFLOW_STREAM_HIGH_WATER_MARK", "3")
        clear_settings_cache()
        assert ReadableStream()._desired_size() == 3
    
    def test_log_level_normalized(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEQFLOW_LOG_LEVEL", "warning")
        clear_settings_cache()
        assert get_settings().logging.level == "WARNING"
    
    def test_debug_forces_debug_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEQFLOW_DEBUG", "true")
        clear_settings_cache()
        assert get_settings().effective_log_level == "DEBUG"
    
    def test_negative_high_water_mark_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEQFLOW_STREAM_HIGH_WATER_MARK", "-1")
        clear_settings_cache()
        with pytest.raises(ValidationError):
            get_settings()


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────


class TestErrors:
    """StreamError payloads and StreamException."""
    
    def test_render(self) -> None:
        error = StreamError(operation="get_reader", message="stream is locked", code=ErrorCode.STREAM_LOCKED)
        assert str(error) == "[STREAM_LOCKED] get_reader: stream is locked"
        assert not error.is_shutdown
    
    def test_shutdown_codes(self) -> None:
        assert StreamError(operation="terminate", message="done", code=ErrorCode.TERMINATED).is_shutdown
        assert StreamError(operation="cancel", message="stop", code=ErrorCode.CANCELLED).is_shutdown
    
    def test_message_from_exception(self) -> None:
        error = StreamError(operation="write", message=ValueError("bad chunk"))
        assert error.message == "bad chunk"
        assert error.code == ErrorCode.UNKNOWN
    
    def test_frozen(self) -> None:
        error = StreamError(operation="read", message="x")
        with pytest.raises(ValidationError):
            error.message = "y"  # type: ignore[misc]
    
    def test_empty_operation_rejected(self) -> None:
        with pytest.raises(ValidationError):
            StreamError(operation="", message="x")
    
    def test_exception_carries_error(self) -> None:
        exc = StreamException.create("close", "already closed", ErrorCode.STREAM_CLOSED)
        assert exc.code == ErrorCode.STREAM_CLOSED
        assert exc.error.operation == "close"
        assert str(exc) == "already closed"


# ─────────────────────────────────────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────────────────────────────────────


class TestLogging:
    """Structured logger output."""
    
    def test_json_renderer(self) -> None:
        buf = io.StringIO()
        log = BoundLogger(context={"component": "zip"}, _renderer=JsonRenderer(output=buf), _level=logging.DEBUG)
        log.debug("source finished", side="right")
        
        record = orjson.loads(buf.getvalue())
        assert record["event"] == "source finished"
        assert record["level"] == "debug"
        assert record["component"] == "zip"
        assert record["side"] == "right"
    
    def test_console_renderer(self) -> None:
        buf = io.StringIO()
        renderer = ConsoleRenderer(output=buf, colors=False, show_timestamp=False)
        log = BoundLogger(_renderer=renderer, _level=logging.INFO).bind(stage="take")
        log.info("stage terminated", count=3)
        assert buf.getvalue().strip() == '[info] stage terminated count=3 stage="take"'
    
    def test_level_filtering(self) -> None:
        buf = io.StringIO()
        log = BoundLogger(_renderer=JsonRenderer(output=buf), _level=logging.WARNING)
        log.debug("hidden")
        log.info("hidden")
        assert buf.getvalue() == ""
    
    def test_log_context_scoped(self) -> None:
        buf = io.StringIO()
        log = BoundLogger(_renderer=JsonRenderer(output=buf), _level=logging.INFO)
        with log_context(pipeline="ingest"):
            log.info("inside")
        log.info("outside")
        
        inside, outside = (orjson.loads(line) for line in buf.getvalue().splitlines())
        assert inside["pipeline"] == "ingest"
        assert "pipeline" not in outside
    
    def test_unbind(self) -> None:
        log = BoundLogger(context={"a": 1, "b": 2}).unbind("a")
        assert log.context == {"b": 2}


# ─────────────────────────────────────────────────────────────────────────────
# Test Doubles
# ─────────────────────────────────────────────────────────────────────────────


class TestManualScheduler:
    """The manual clock fires timers in order and skips cancelled ones."""
    
    def test_fires_due_timers_in_order(self) -> None:
        clock = ManualScheduler()
        fired: list[str] = []
        clock.call_later(2.0, lambda: fired.append("late"))
        clock.call_later(1.0, lambda: fired.append("early"))
        
        assert clock.advance(1.5) == 1
        assert fired == ["early"]
        assert clock.now == 1.5
        assert clock.advance(1.0) == 1
        assert fired == ["early", "late"]
        assert clock.pending == 0
    
    def test_cancelled_timer_never_fires(self) -> None:
        clock = ManualScheduler()
        fired: list[bool] = []
        clock.call_later(1.0, lambda: fired.append(True)).cancel()
        assert clock.pending == 0
        assert clock.advance(5.0) == 0
        assert fired == []
        assert clock.armed == 1
