"""Runtime - Sequences, streams and their observability.

Contains: pull sequences, async pull sequences, backpressured streams, logging.
"""

from __future__ import annotations

__all__ = [
    # Sequences
    "Value", "Done", "DONE", "Step", "PullSeq", "AsyncPullSeq",
    "sync", "aio",
    # Streams
    "streams", "ReadableStream", "WritableStream", "TransformStream", "iterate_stream",
    # Observability
    "BoundLogger", "configure_logging", "get_logger", "log_context",
]


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies."""
    if name in ("Value", "Done", "DONE", "Step", "PullSeq", "AsyncPullSeq", "sync", "aio"):
        from . import sequences
        return getattr(sequences, name)
    
    if name == "streams":
        from . import streams
        return streams
    
    if name in ("ReadableStream", "WritableStream", "TransformStream", "iterate_stream"):
        from . import streams
        return getattr(streams, name)
    
    if name in ("BoundLogger", "configure_logging", "get_logger", "log_context"):
        from . import observability
        return getattr(observability, name)
    
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
