"""Structured logging for sequence and stream lifecycles.

Provides context-aware structured logging:
- Bound context (component name, stream ids, counters)
- Human-readable dev output, JSON for log aggregation
- Scoped context managers

Quick Start:
    >>> from seqflow.runtime.observability import get_logger, configure_logging
    >>> 
    >>> # Configure (once at startup); defaults come from SEQFLOW_LOG_*
    >>> configure_logging(format="console", level="DEBUG")
    >>> 
    >>> log = get_logger("seqflow.streams")
    >>> log.debug("stream cancelled", reason="consumer stopped")
    
    >>> # Bind context
    >>> log = log.bind(stage="take", count=3)
    >>> log.debug("stage terminated")
"""

from __future__ import annotations

import logging
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, TextIO, runtime_checkable

from seqflow.foundation.config import get_settings

if TYPE_CHECKING:
    from types import TracebackType

JsonDict = dict[str, Any]

# Context var for bound context (persists across async calls)
_log_context: ContextVar[JsonDict] = ContextVar("log_context", default={})


# ─────────────────────────────────────────────────────────────────────────────
# Core Logger
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class BoundLogger:
    """Structured logger with bound context. Immutable - bind() returns a new logger with merged context.
    
    A logger without an explicit level follows the globally configured one, so
    module-level loggers created at import time honour later configure_logging() calls.
    
    Example:
        >>> log = BoundLogger(context={"component": "zip"})
        >>> log.info("source finished", side="right")
        # => 10:30:45.120 [info] source finished component="zip" side="right"
    """
    
    context: JsonDict = field(default_factory=dict)
    _renderer: LogRenderer | None = None
    _level: int | None = None
    
    def bind(self, **kw: Any) -> BoundLogger:
        """Create new logger with additional bound context."""
        return BoundLogger(context={**self.context, **kw}, _renderer=self._renderer, _level=self._level)
    
    def unbind(self, *keys: str) -> BoundLogger:
        """Create new logger without specified keys."""
        return BoundLogger(context={k: v for k, v in self.context.items() if k not in keys},
                           _renderer=self._renderer, _level=self._level)
    
    def is_enabled_for(self, level: int) -> bool:
        return level >= (self._level if self._level is not None else _get_level())
    
    def _log(self, level: int, event: str, **kw: Any) -> None:
        if not self.is_enabled_for(level):
            return
        merged = {**_log_context.get(), **self.context, **kw}
        (self._renderer or _get_renderer()).render(LogEntry(time.time(), _level_name(level), event, merged))
    
    def debug(self, event: str, **kw: Any) -> None: self._log(logging.DEBUG, event, **kw)
    def info(self, event: str, **kw: Any) -> None: self._log(logging.INFO, event, **kw)
    def warning(self, event: str, **kw: Any) -> None: self._log(logging.WARNING, event, **kw)
    def error(self, event: str, **kw: Any) -> None: self._log(logging.ERROR, event, **kw)
    
    def exception(self, event: str, **kw: Any) -> None:
        """Log error with exception info."""
        import traceback
        self._log(logging.ERROR, event, exc_info=traceback.format_exc(), **kw)


@dataclass(slots=True)
class LogEntry:
    """Log entry with all context."""
    
    timestamp: float
    level: str
    event: str
    context: JsonDict
    
    @property
    def ts_iso(self) -> str:
        """ISO formatted timestamp."""
        return datetime.fromtimestamp(self.timestamp, tz=UTC).isoformat()
    
    @property
    def ts_human(self) -> str:
        """Human-readable timestamp (HH:MM:SS.mmm)."""
        return datetime.fromtimestamp(self.timestamp, tz=UTC).strftime("%H:%M:%S.%f")[:-3]


# ─────────────────────────────────────────────────────────────────────────────
# Renderers
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class LogRenderer(Protocol):
    """Protocol for log output renderers."""
    
    def render(self, entry: LogEntry) -> None: ...


@dataclass(slots=True)
class ConsoleRenderer:
    """Human-readable colored console output. Format: timestamp [level] event key=value ..."""
    
    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None  # None = auto-detect
    show_timestamp: bool = True
    
    def __post_init__(self) -> None:
        if self.colors is None:
            self.colors = getattr(self.output, "isatty", lambda: False)()
    
    def render(self, entry: LogEntry) -> None:
        c = _COLORS if self.colors else _NO_COLORS
        parts = ([f"{c['dim']}{entry.ts_human}{c['reset']}"] if self.show_timestamp else [])
        parts += [f"{_LEVEL_COLORS.get(entry.level, c['dim']) if self.colors else ''}[{entry.level}]{c['reset']}",
                  f"{c['bold']}{entry.event}{c['reset']}"]
        parts += [f"{c['cyan']}{k}{c['reset']}={_format_value(v, c)}"
                  for k, v in sorted(entry.context.items()) if k != "exc_info"]
        print(" ".join(parts), file=self.output)
        if "exc_info" in entry.context:
            print(f"{c['red']}{entry.context['exc_info']}{c['reset']}", file=self.output)


@dataclass(slots=True)
class JsonRenderer:
    """JSON Lines output for log aggregation."""
    
    output: TextIO = field(default_factory=lambda: sys.stdout)
    
    def render(self, entry: LogEntry) -> None:
        import orjson
        print(orjson.dumps({"timestamp": entry.ts_iso, "level": entry.level, "event": entry.event,
                            **entry.context}, default=repr, option=orjson.OPT_NON_STR_KEYS).decode(),
              file=self.output)


@dataclass(slots=True)
class NoOpRenderer:
    """Silent renderer for testing."""
    
    def render(self, entry: LogEntry) -> None:
        pass


# ─────────────────────────────────────────────────────────────────────────────
# Global Configuration
# ─────────────────────────────────────────────────────────────────────────────


_renderer: ContextVar[LogRenderer | None] = ContextVar("log_renderer", default=None)
_level: ContextVar[int | None] = ContextVar("log_level", default=None)


def configure_logging(
    format: str | None = None,  # noqa: A002 - shadows builtin but matches stdlib
    level: str | None = None,
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> LogRenderer:
    """Configure global structured logging. Format: "console" (human), "json" (machine), "none".
    
    Unset arguments fall back to SEQFLOW_LOG_* settings.
    """
    settings = get_settings()
    format = format or settings.logging.format
    level = level or settings.effective_log_level
    colors = settings.logging.colors if colors is None else colors
    _level.set(getattr(logging, level.upper(), logging.INFO))
    match format:
        case "console": renderer: LogRenderer = ConsoleRenderer(output=output or sys.stderr, colors=colors)
        case "json": renderer = JsonRenderer(output=output or sys.stdout)
        case "none": renderer = NoOpRenderer()
        case _: raise ValueError(f"Unknown format: {format}. Use 'console', 'json', or 'none'")
    _renderer.set(renderer)
    return renderer


def get_logger(name: str | None = None, **initial_context: Any) -> BoundLogger:
    """Get a structured logger with optional initial context. Name is added to context as 'logger'."""
    ctx = {**initial_context, **({"logger": name} if name else {})}
    return BoundLogger(context=ctx)


def _get_level() -> int:
    if (level := _level.get()) is None:
        level = getattr(logging, get_settings().effective_log_level, logging.INFO)
    return level


def _get_renderer() -> LogRenderer:
    """Get configured renderer or create default."""
    if (renderer := _renderer.get()) is None:
        _renderer.set(renderer := ConsoleRenderer())
    return renderer


class log_context:
    """Context manager for scoped logging context. Adds key-value pairs to all log entries within the scope."""
    
    __slots__ = ("_ctx", "_token")
    
    def __init__(self, **kw: Any) -> None:
        self._ctx: JsonDict = dict(kw)
        self._token: object | None = None
    
    def __enter__(self) -> log_context:
        self._token = _log_context.set({**_log_context.get(), **self._ctx})
        return self
    
    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None,
                 exc_tb: TracebackType | None) -> None:
        self._token and _log_context.reset(self._token)  # type: ignore[func-returns-value,arg-type]


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


_COLORS = {"reset": "\033[0m", "bold": "\033[1m", "dim": "\033[2m", "red": "\033[31m",
           "green": "\033[32m", "yellow": "\033[33m", "blue": "\033[34m", "cyan": "\033[36m", "white": "\033[37m"}
_NO_COLORS = {k: "" for k in _COLORS}
_LEVEL_COLORS = {"debug": _COLORS["dim"], "info": _COLORS["green"], "warning": _COLORS["yellow"], "error": _COLORS["red"]}


def _level_name(level: int) -> str:
    """Convert logging level int to lowercase name."""
    return logging.getLevelName(level).lower()


def _format_value(v: object, c: dict[str, str]) -> str:
    """Format a value for console output."""
    match v:
        case str(): return f'{c["yellow"]}"{v}"{c["reset"]}'
        case bool(): return f'{c["blue"]}{str(v).lower()}{c["reset"]}'
        case int() | float(): return f'{c["blue"]}{v}{c["reset"]}'
        case dict(): return f'{c["dim"]}{{{len(v)} items}}{c["reset"]}'
        case list() | tuple(): return f'{c["dim"]}[{len(v)} items]{c["reset"]}'
        case _: return f'{c["white"]}{v!r}{c["reset"]}'
