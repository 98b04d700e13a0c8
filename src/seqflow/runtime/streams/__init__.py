"""Backpressured streams and the combinators that operate on them.

- primitive: ReadableStream, WritableStream, TransformStream and their locks
- adapter: iterate_stream, exposing a stream as an async pull sequence
- combinators: transform stages and fan-in sources
- timers: Scheduler protocol used by debounce and throttle
"""

from .adapter import StreamIterator, iterate_stream
from .combinators import (
    concat,
    debounce,
    drop,
    enumerate,
    filter,
    iota,
    map,
    take,
    throttle,
    transform,
    zip,
    zip_with,
)
from .primitive import (
    ReadableStream,
    ReadableStreamController,
    StreamReader,
    StreamState,
    StreamWriter,
    Transformer,
    TransformStream,
    TransformStreamController,
    WritableStream,
)
from .timers import AsyncioScheduler, Scheduler, TimerHandle, default_scheduler

__all__ = [
    # Primitive
    "ReadableStream",
    "ReadableStreamController",
    "StreamReader",
    "StreamState",
    "StreamWriter",
    "Transformer",
    "TransformStream",
    "TransformStreamController",
    "WritableStream",
    # Adapter
    "StreamIterator",
    "iterate_stream",
    # Combinators
    "transform",
    "map",
    "filter",
    "take",
    "drop",
    "enumerate",
    "concat",
    "zip",
    "zip_with",
    "debounce",
    "throttle",
    "iota",
    # Timers
    "Scheduler",
    "TimerHandle",
    "AsyncioScheduler",
    "default_scheduler",
]
