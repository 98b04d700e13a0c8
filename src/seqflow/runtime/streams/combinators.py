"""Stream combinators operating directly on backpressured streams.

Per-item operators are transform stages, used with ``pipe_through``; the
fan-in operators and ``iota`` build readable streams:

    - transform stages: transform, map, filter, take, drop, enumerate,
      zip_with, debounce, throttle
    - readable streams: concat, zip, iota

No stage buffers ahead of its consumer, so a stalled reader stalls the
whole chain back to the source.

Example:
    >>> from seqflow import aio, streams
    >>> out = streams.iota().pipe_through(streams.drop(2)).pipe_through(streams.take(3))
    >>> await aio.to_list(out)
    [2, 3, 4]
"""

from __future__ import annotations

import asyncio
import inspect
import math
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from seqflow.foundation.config import get_settings
from seqflow.runtime.observability.logging import get_logger
from seqflow.runtime.sequences.step import Done, Value

from .primitive import (
    ReadableStream,
    ReadableStreamController,
    StreamReader,
    StreamState,
    Transformer,
    TransformStream,
    TransformStreamController,
    _spawn,
)
from .timers import Scheduler, TimerHandle, default_scheduler

T = TypeVar("T")
U = TypeVar("U")

__all__ = [
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
]

log = get_logger("seqflow.streams.combinators")

TransformCallback = Callable[[T, TransformStreamController[U]], Awaitable[None] | None]
FlushCallback = Callable[[TransformStreamController[U]], Awaitable[None] | None]


async def _resolve(result: Any) -> Any:
    return await result if inspect.isawaitable(result) else result


async def _cancel_quietly(reader: StreamReader[Any], reason: object) -> None:
    try:
        await reader.cancel(reason)
    except Exception as exc:
        log.debug("input cancel failed", error=repr(exc))


# ─────────────────────────────────────────────────────────────────────────────
# Per-Item Stages
# ─────────────────────────────────────────────────────────────────────────────


class _CallbackTransformer(Transformer[T, U]):
    __slots__ = ("_transform", "_flush")
    
    def __init__(self, fn: TransformCallback[T, U], flush: FlushCallback[U] | None) -> None:
        self._transform = fn
        self._flush = flush
    
    def transform(self, chunk: T, controller: TransformStreamController[U]) -> Awaitable[None] | None:
        return self._transform(chunk, controller)
    
    def flush(self, controller: TransformStreamController[U]) -> Awaitable[None] | None:
        return self._flush(controller) if self._flush is not None else None


def transform(fn: TransformCallback[T, U], flush: FlushCallback[U] | None = None) -> TransformStream[T, U]:
    """Transform stage from a ``fn(chunk, controller)`` callback and optional ``flush(controller)``."""
    return TransformStream(_CallbackTransformer(fn, flush))


def map(fn: Callable[[T], U | Awaitable[U]]) -> TransformStream[T, U]:  # noqa: A001
    """Apply ``fn`` to each chunk, awaiting its result when it is awaitable."""
    async def apply(chunk: T, controller: TransformStreamController[U]) -> None:
        controller.enqueue(await _resolve(fn(chunk)))
    return transform(apply)


def filter(predicate: Callable[[T], object]) -> TransformStream[T, T]:  # noqa: A001
    """Forward chunks for which ``predicate`` (awaited if needed) is truthy."""
    async def keep(chunk: T, controller: TransformStreamController[T]) -> None:
        if await _resolve(predicate(chunk)):
            controller.enqueue(chunk)
    return transform(keep)


class _Take(Transformer[T, T]):
    __slots__ = ("_remaining",)
    
    def __init__(self, count: int) -> None:
        self._remaining = count
    
    def start(self, controller: TransformStreamController[T]) -> None:
        if self._remaining <= 0:
            controller.terminate()
    
    def transform(self, chunk: T, controller: TransformStreamController[T]) -> None:
        controller.enqueue(chunk)
        self._remaining -= 1
        if self._remaining == 0:
            controller.terminate()


def take(count: int) -> TransformStream[T, T]:
    """Forward the first ``count`` chunks, then terminate the stage.
    
    Termination closes the output and refuses further input, so the pipe
    feeding the stage cancels its source.
    """
    return TransformStream(_Take(count))


class _Drop(Transformer[T, T]):
    __slots__ = ("_remaining",)
    
    def __init__(self, count: int) -> None:
        self._remaining = count
    
    def transform(self, chunk: T, controller: TransformStreamController[T]) -> None:
        if self._remaining > 0:
            self._remaining -= 1
            return
        controller.enqueue(chunk)


def drop(count: int) -> TransformStream[T, T]:
    """Discard the first ``count`` chunks."""
    return TransformStream(_Drop(count))


class _Enumerate(Transformer[T, tuple[int, T]]):
    __slots__ = ("_index",)
    
    def __init__(self, start: int) -> None:
        self._index = start
    
    def transform(self, chunk: T, controller: TransformStreamController[tuple[int, T]]) -> None:
        controller.enqueue((self._index, chunk))
        self._index += 1


def enumerate(start: int = 0) -> TransformStream[T, tuple[int, T]]:  # noqa: A001
    """Pair each chunk with its position, counting from ``start``."""
    return TransformStream(_Enumerate(start))


# ─────────────────────────────────────────────────────────────────────────────
# Fan-In
# ─────────────────────────────────────────────────────────────────────────────


def concat(*streams: ReadableStream[T]) -> ReadableStream[T]:
    """Drain each stream in turn into one output, closing it after the last.
    
    Streams are locked only when their turn comes. Cancelling the output
    cancels the stream being drained; later streams are left untouched.
    Must be called with an event loop running.
    """
    stage: TransformStream[T, T] = TransformStream()
    
    async def drain() -> None:
        for stream in streams:
            if stage.writable.state is not StreamState.WRITABLE:
                return
            await stream.pipe_to(stage.writable, prevent_close=True)
        writer = stage.writable.get_writer()
        try:
            await writer.close()
        finally:
            writer.release_lock()
    
    async def run() -> None:
        try:
            await drain()
        except Exception as exc:
            log.debug("concat stopped", error=repr(exc))
    
    _spawn(run())
    return stage.readable


class _Zip:
    """Pull source pairing one read from each input per output chunk."""
    
    __slots__ = ("_left", "_right")
    
    def __init__(self, left: ReadableStream[Any], right: ReadableStream[Any]) -> None:
        self._left = left.get_reader()
        self._right = right.get_reader()
    
    async def pull(self, controller: ReadableStreamController[tuple[Any, Any]]) -> None:
        left, right = await asyncio.gather(self._left.read(), self._right.read(), return_exceptions=True)
        error = next((o for o in (left, right) if isinstance(o, BaseException)), None)
        if error is None and isinstance(left, Value) and isinstance(right, Value):
            controller.enqueue((left.value, right.value))
            return
        for reader, outcome in ((self._left, left), (self._right, right)):
            if isinstance(outcome, Value):
                await _cancel_quietly(reader, error)
        self._release()
        if error is not None:
            controller.error(error)
        else:
            controller.close()
    
    async def cancel(self, reason: object) -> None:
        try:
            for reader in (self._left, self._right):
                if not reader.released:
                    await _cancel_quietly(reader, reason)
        finally:
            self._release()
    
    def _release(self) -> None:
        self._left.release_lock()
        self._right.release_lock()


def zip(left: ReadableStream[T], right: ReadableStream[U]) -> ReadableStream[tuple[T, U]]:  # noqa: A001
    """Pair chunks of two streams positionally.
    
    Both inputs are locked immediately and read concurrently, one chunk each
    per output chunk. When either ends, the other is cancelled and both locks
    are released; an error on either side cancels the other and errors the
    output.
    """
    source = _Zip(left, right)
    return ReadableStream(pull=source.pull, cancel=source.cancel, high_water_mark=0)


class _ZipWith(Transformer[T, tuple[T, U]]):
    __slots__ = ("_reader", "_ended")
    
    def __init__(self, other: ReadableStream[U]) -> None:
        self._reader: StreamReader[U] = other.get_reader()
        self._ended = False
    
    async def transform(self, chunk: T, controller: TransformStreamController[tuple[T, U]]) -> None:
        if self._ended:
            return
        try:
            step = await self._reader.read()
        except Exception as exc:
            self._stop()
            controller.error(exc)
            return
        if isinstance(step, Done):
            self._stop()
            controller.terminate()
            return
        controller.enqueue((chunk, step.value))
    
    async def flush(self, controller: TransformStreamController[tuple[T, U]]) -> None:
        await self._shutdown(None)
    
    async def cancel(self, reason: object) -> None:
        await self._shutdown(reason)
    
    async def _shutdown(self, reason: object) -> None:
        if self._ended:
            return
        try:
            await _cancel_quietly(self._reader, reason)
        finally:
            self._stop()
    
    def _stop(self) -> None:
        self._ended = True
        self._reader.release_lock()


def zip_with(other: ReadableStream[U]) -> TransformStream[T, tuple[T, U]]:
    """Pair each chunk with the next chunk of ``other``; ends when ``other`` does.
    
    ``other`` is locked for the lifetime of the stage and cancelled if the
    stage finishes first.
    """
    return TransformStream(_ZipWith(other))


# ─────────────────────────────────────────────────────────────────────────────
# Time Windows
# ─────────────────────────────────────────────────────────────────────────────


class _Window(Transformer[T, T]):
    """Timer state shared by debounce and throttle: one handle per stage."""
    
    __slots__ = ("_interval", "_scheduler", "_timer")
    
    def __init__(self, interval: float, scheduler: Scheduler) -> None:
        if interval < 0:
            raise ValueError(f"interval must be non-negative, got {interval}")
        self._interval = interval
        self._scheduler = scheduler
        self._timer: TimerHandle | None = None
    
    def _arm(self) -> None:
        self._timer = self._scheduler.call_later(self._interval, self._expire)
    
    def _expire(self) -> None:
        self._timer = None
    
    def _clear(self) -> None:
        if (timer := self._timer) is not None:
            self._timer = None
            timer.cancel()
            log.debug("window timer cleared", stage=type(self).__name__)
    
    def flush(self, controller: TransformStreamController[T]) -> None:
        self._clear()
    
    def cancel(self, reason: object) -> None:
        self._clear()


class _Debounce(_Window[T]):
    __slots__ = ()
    
    def transform(self, chunk: T, controller: TransformStreamController[T]) -> None:
        if self._timer is None:
            controller.enqueue(chunk)
        else:
            self._timer.cancel()
        self._arm()


class _Throttle(_Window[T]):
    __slots__ = ()
    
    def transform(self, chunk: T, controller: TransformStreamController[T]) -> None:
        if self._timer is None:
            controller.enqueue(chunk)
            self._arm()


def debounce(interval: float, *, scheduler: Scheduler = default_scheduler) -> TransformStream[T, T]:
    """Forward the first chunk of each burst.
    
    Every chunk restarts an ``interval``-second timer; chunks arriving while
    it runs are dropped. Once the timer fires the next chunk starts a new
    burst.
    """
    return TransformStream(_Debounce(interval, scheduler))


def throttle(interval: float, *, scheduler: Scheduler = default_scheduler) -> TransformStream[T, T]:
    """Forward at most one chunk per ``interval``-second window, dropping the rest.
    
    Unlike debounce, dropped chunks do not extend the window.
    """
    return TransformStream(_Throttle(interval, scheduler))


# ─────────────────────────────────────────────────────────────────────────────
# Sources
# ─────────────────────────────────────────────────────────────────────────────


def iota(n: float = math.inf) -> ReadableStream[int]:
    """Stream of ``0, 1, ... n-1``, yielding to the event loop before each chunk."""
    index = 0
    tick = get_settings().streams.iota_tick
    
    def start(controller: ReadableStreamController[int]) -> None:
        if n <= 0:
            controller.close()
    
    async def pull(controller: ReadableStreamController[int]) -> None:
        nonlocal index
        await asyncio.sleep(tick)
        controller.enqueue(index)
        index += 1
        if index >= n:
            controller.close()
    
    return ReadableStream(start=start, pull=pull)
