"""Seqflow - Composable combinators over pull sequences and backpressured streams.

Three kinds of sequence share one set of operators, each in its own namespace:

    - sync: synchronous pull sequences (any iterable is accepted)
    - aio: async pull sequences (async iterables, streams and iterables are accepted)
    - streams: transform stages and sources over backpressured streams

Every combinator owns the inputs it still needs. Stopping early or failing
releases exactly those inputs, once, before control returns to the caller:
generators are closed, streams are cancelled and reader locks released.

Synchronous:
    >>> from seqflow import sync
    >>> sync.to_list(sync.take(sync.range(1, 50), 3))
    [1, 2, 3]

Async:
    >>> from seqflow import aio, sync
    >>> await aio.to_list(aio.zip(sync.range(1, 4), sync.range(4, 100)))
    [(1, 4), (2, 5), (3, 6)]

Streams:
    >>> from seqflow import aio, streams
    >>> numbers = streams.iota().pipe_through(streams.map(lambda n: n * n))
    >>> await aio.to_list(numbers.pipe_through(streams.take(4)))
    [0, 1, 4, 9]

Early exit from ``async for``:
    >>> import contextlib
    >>> async with contextlib.aclosing(aio.map(source, parse)) as records:
    ...     async for record in records:
    ...         if record.last:
    ...             break      # source is finished on exit
"""

from __future__ import annotations

__version__ = "0.1.0"

# Config
from .foundation.config import SeqflowSettings, clear_settings_cache, get_settings

# Errors
from .foundation.errors import ErrorCode, StreamError, StreamException

# Logging
from .runtime.observability import configure_logging, get_logger

# Sequences
from .runtime.sequences import DONE, AsyncPullSeq, Done, PullSeq, Step, Value, aio, sync

# Streams
from .runtime import streams
from .runtime.streams import ReadableStream, TransformStream, WritableStream, iterate_stream

__all__ = [
    # Namespaces
    "sync",
    "aio",
    "streams",
    # Steps and sequences
    "Value",
    "Done",
    "DONE",
    "Step",
    "PullSeq",
    "AsyncPullSeq",
    # Streams
    "ReadableStream",
    "WritableStream",
    "TransformStream",
    "iterate_stream",
    # Errors
    "ErrorCode",
    "StreamError",
    "StreamException",
    # Config
    "SeqflowSettings",
    "get_settings",
    "clear_settings_cache",
    # Logging
    "configure_logging",
    "get_logger",
]
