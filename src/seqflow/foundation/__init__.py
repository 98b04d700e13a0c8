"""Foundation - Building blocks shared by every seqflow module.

Contains: configuration, error types, test doubles.
"""

from __future__ import annotations

__all__ = [
    # Config
    "SeqflowSettings", "StreamSettings", "LoggingSettings", "get_settings", "clear_settings_cache",
    # Errors
    "ErrorCode", "StreamError", "StreamException",
    # Testing
    "RecordingRange", "RecordingAsyncRange", "StreamProbe", "recording_stream", "ManualScheduler",
]


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies."""
    if name in ("SeqflowSettings", "StreamSettings", "LoggingSettings", "get_settings", "clear_settings_cache"):
        from . import config
        return getattr(config, name)
    
    if name in ("ErrorCode", "StreamError", "StreamException"):
        from . import errors
        return getattr(errors, name)
    
    if name in ("RecordingRange", "RecordingAsyncRange", "StreamProbe", "recording_stream", "ManualScheduler"):
        from . import testing
        return getattr(testing, name)
    
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
