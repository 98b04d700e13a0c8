"""Backpressured stream primitive: readable, writable and transform streams.

A minimal stream model the combinators are written against:

    - ReadableStream: pull-driven source with an exclusive reader lock
    - WritableStream: serialized sink with an exclusive writer lock
    - TransformStream: readable/writable pair joined by a Transformer
    - pipe_to / pipe_through: move chunks between them, honouring backpressure

Backpressure:
    A readable stream calls its ``pull`` callback only after a reader has asked
    for data, and afterwards only while fewer than ``high_water_mark`` chunks are
    buffered. A transform stage accepts a write only when its readable side has
    a pending read, so a stalled consumer stalls every stage upstream of it.

Example:
    >>> async def main() -> list[int]:
    ...     n = 0
    ...     def pull(controller: ReadableStreamController[int]) -> None:
    ...         nonlocal n
    ...         if n < 3:
    ...             controller.enqueue(n)
    ...             n += 1
    ...         else:
    ...             controller.close()
    ...     stream = ReadableStream(pull=pull)
    ...     reader = stream.get_reader()
    ...     out = []
    ...     while isinstance(step := await reader.read(), Value):
    ...         out.append(step.value)
    ...     reader.release_lock()
    ...     return out
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from seqflow.foundation.config import get_settings
from seqflow.foundation.errors import ErrorCode, StreamException
from seqflow.runtime.observability.logging import get_logger
from seqflow.runtime.sequences.step import DONE, Done, Step, Value

if TYPE_CHECKING:
    from .adapter import StreamIterator

    PullCallback = Callable[[ReadableStreamController[T]], Awaitable[None] | None]
    CancelCallback = Callable[[BaseException | None], Awaitable[None] | None]

T = TypeVar("T")
I = TypeVar("I")  # noqa: E741
O = TypeVar("O")  # noqa: E741

__all__ = [
    "StreamState",
    "ReadableStream",
    "ReadableStreamController",
    "StreamReader",
    "WritableStream",
    "StreamWriter",
    "Transformer",
    "TransformStream",
    "TransformStreamController",
]

log = get_logger("seqflow.streams")

# Background pipes and pulls are retained here until they finish
_background: set[asyncio.Task[Any]] = set()


class StreamState(StrEnum):
    """Stream lifecycle states."""
    READABLE = "readable"
    WRITABLE = "writable"
    CLOSING = "closing"
    CLOSED = "closed"
    ERRORED = "errored"


async def _settle(result: object) -> None:
    if inspect.isawaitable(result):
        await result


def _spawn(coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
    task = asyncio.get_running_loop().create_task(coro)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


def _as_error(reason: object, operation: str, message: str) -> BaseException:
    return reason if isinstance(reason, BaseException) else StreamException.create(
        operation, message, ErrorCode.CANCELLED,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Readable Streams
# ─────────────────────────────────────────────────────────────────────────────


class ReadableStreamController(Generic[T]):
    """Handle given to a readable stream's source callbacks."""

    __slots__ = ("_stream",)

    def __init__(self, stream: ReadableStream[T]) -> None:
        self._stream = stream

    @property
    def desired_size(self) -> int | None:
        """Free buffer slots; negative when over the high-water mark, None once errored."""
        return self._stream._desired_size()

    def enqueue(self, chunk: T) -> None:
        self._stream._enqueue(chunk)

    def close(self) -> None:
        self._stream._request_close()

    def error(self, exc: BaseException) -> None:
        self._stream._fail(exc)


class ReadableStream(Generic[T]):
    """Pull-driven readable stream with an exclusive reader lock.

    Args:
        start: Called synchronously with the controller at construction
        pull: Called (possibly async) when the stream wants more data
        cancel: Called with the reason when a consumer cancels the stream
        high_water_mark: Chunks to buffer ahead of the reader (default from settings)
    """

    def __init__(
        self,
        *,
        start: Callable[[ReadableStreamController[T]], None] | None = None,
        pull: PullCallback[T] | None = None,
        cancel: CancelCallback | None = None,
        high_water_mark: int | None = None,
    ) -> None:
        self._queue: deque[T] = deque()
        self._reads: deque[asyncio.Future[Step[T]]] = deque()
        self._state = StreamState.READABLE
        self._error: BaseException | None = None
        self._close_requested = False
        self._demanded = False
        self._pulling = False
        self._pull_again = False
        self._reader: StreamReader[T] | None = None
        self._pull_fn = pull
        self._cancel_fn = cancel
        self._hwm = get_settings().streams.high_water_mark if high_water_mark is None else high_water_mark
        self._controller = ReadableStreamController(self)
        if start is not None:
            start(self._controller)

    def __repr__(self) -> str:
        return f"ReadableStream(state={self._state}, locked={self.locked}, buffered={len(self._queue)})"

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def locked(self) -> bool:
        """Whether a reader currently holds the lock."""
        return self._reader is not None

    def get_reader(self) -> StreamReader[T]:
        """Acquire the exclusive reader lock."""
        if self._reader is not None:
            raise StreamException.create("get_reader", "stream is already locked to a reader", ErrorCode.STREAM_LOCKED)
        self._reader = StreamReader(self)
        return self._reader

    async def cancel(self, reason: object = None) -> None:
        """Cancel an unlocked stream; locked streams are cancelled through their reader."""
        if self._reader is not None:
            raise StreamException.create("cancel", "cannot cancel a locked stream", ErrorCode.STREAM_LOCKED)
        await self._cancel(reason)

    async def pipe_to(
        self,
        dest: WritableStream[T],
        *,
        prevent_close: bool = False,
        prevent_abort: bool = False,
        prevent_cancel: bool = False,
    ) -> None:
        """Move every chunk into ``dest``, locking both ends until done.

        Closes ``dest`` when this stream ends, aborts it when this stream errors
        and cancels this stream when ``dest`` fails, unless prevented.
        """
        reader, writer = self._lock_pipe(dest)
        await _pipe(reader, writer, prevent_close=prevent_close, prevent_abort=prevent_abort,
                    prevent_cancel=prevent_cancel)

    def pipe_through(self, transform: TransformStream[T, O], **options: bool) -> ReadableStream[O]:
        """Pipe into ``transform.writable`` in the background and return its readable side.

        Both locks are taken immediately; must be called with an event loop running.
        """
        reader, writer = self._lock_pipe(transform.writable)
        _spawn(_background_pipe(reader, writer, **options))
        return transform.readable

    def __aiter__(self) -> StreamIterator[T]:
        from .adapter import iterate_stream
        return iterate_stream(self)

    def _lock_pipe(self, dest: WritableStream[T]) -> tuple[StreamReader[T], StreamWriter[T]]:
        if dest.locked:
            raise StreamException.create("pipe_to", "destination is already locked to a writer", ErrorCode.STREAM_LOCKED)
        reader = self.get_reader()
        return reader, dest.get_writer()

    # ── internal state machine ────────────────────────────────────────────

    def _desired_size(self) -> int | None:
        match self._state:
            case StreamState.ERRORED: return None
            case StreamState.CLOSED: return 0
            case _: return self._hwm - len(self._queue)

    def _next_read(self) -> asyncio.Future[Step[T]] | None:
        while self._reads:
            if not (future := self._reads.popleft()).done():
                return future
        return None

    def _has_pending_reads(self) -> bool:
        while self._reads and self._reads[0].done():
            self._reads.popleft()
        return bool(self._reads)

    def _should_pull(self) -> bool:
        if self._state is not StreamState.READABLE or self._close_requested:
            return False
        if self._pull_fn is None or not self._demanded:
            return False
        return self._has_pending_reads() or (self._desired_size() or 0) > 0

    def _maybe_pull(self) -> None:
        if not self._should_pull():
            return
        if self._pulling:
            self._pull_again = True
            return
        self._pulling = True
        _spawn(self._call_pull())

    async def _call_pull(self) -> None:
        try:
            await _settle(self._pull_fn(self._controller))  # type: ignore[misc]
        except Exception as exc:
            self._pulling = False
            self._fail(exc)
            return
        self._pulling = False
        if self._pull_again:
            self._pull_again = False
            self._maybe_pull()

    async def _read(self) -> Step[T]:
        self._demanded = True
        if self._queue:
            chunk = self._queue.popleft()
            if self._close_requested and not self._queue:
                self._finalize_close()
            else:
                self._maybe_pull()
            return Value(chunk)
        if self._state is StreamState.CLOSED:
            return DONE
        if self._state is StreamState.ERRORED:
            raise self._error  # type: ignore[misc]
        future: asyncio.Future[Step[T]] = asyncio.get_running_loop().create_future()
        self._reads.append(future)
        self._maybe_pull()
        return await future

    def _enqueue(self, chunk: T) -> None:
        if self._state is not StreamState.READABLE or self._close_requested:
            raise StreamException.create("enqueue", "cannot enqueue into a closed stream", ErrorCode.STREAM_CLOSED)
        if (future := self._next_read()) is not None:
            future.set_result(Value(chunk))
        else:
            self._queue.append(chunk)
        self._maybe_pull()

    def _request_close(self) -> None:
        if self._state is not StreamState.READABLE or self._close_requested:
            raise StreamException.create("close", "stream is already closed", ErrorCode.STREAM_CLOSED)
        self._close_requested = True
        if not self._queue:
            self._finalize_close()

    def _finalize_close(self) -> None:
        self._state = StreamState.CLOSED
        while (future := self._next_read()) is not None:
            future.set_result(DONE)

    def _fail(self, exc: BaseException) -> None:
        if self._state is not StreamState.READABLE:
            return
        self._state = StreamState.ERRORED
        self._error = exc
        self._queue.clear()
        self._reject_reads(exc)

    def _reject_reads(self, exc: BaseException) -> None:
        while (future := self._next_read()) is not None:
            future.set_exception(exc)

    async def _cancel(self, reason: object) -> None:
        if self._state is StreamState.CLOSED:
            return
        if self._state is StreamState.ERRORED:
            raise self._error  # type: ignore[misc]
        self._queue.clear()
        self._finalize_close()
        log.debug("stream cancelled", reason=repr(reason))
        if self._cancel_fn is not None:
            await _settle(self._cancel_fn(reason))  # type: ignore[arg-type]


class StreamReader(Generic[T]):
    """Exclusive reader of a ReadableStream. Release the lock when done."""

    __slots__ = ("_stream",)

    def __init__(self, stream: ReadableStream[T]) -> None:
        self._stream: ReadableStream[T] | None = stream

    @property
    def released(self) -> bool:
        return self._stream is None

    def _owner(self, operation: str) -> ReadableStream[T]:
        if self._stream is None:
            raise StreamException.create(operation, "reader lock was released", ErrorCode.READER_RELEASED)
        return self._stream

    async def read(self) -> Step[T]:
        """Next chunk as ``Value``, or ``DONE`` once the stream is closed."""
        return await self._owner("read")._read()

    async def cancel(self, reason: object = None) -> None:
        """Tell the producer no more data is wanted."""
        await self._owner("cancel")._cancel(reason)

    def release_lock(self) -> None:
        """Release the lock; reads still pending are rejected. Idempotent."""
        if (stream := self._stream) is None:
            return
        self._stream = None
        stream._reader = None
        stream._reject_reads(StreamException.create(
            "release_lock", "reader released with reads pending", ErrorCode.READER_RELEASED,
        ))


# ─────────────────────────────────────────────────────────────────────────────
# Writable Streams
# ─────────────────────────────────────────────────────────────────────────────


class WritableStream(Generic[T]):
    """Sink with serialized writes and an exclusive writer lock.

    Args:
        write: Called (possibly async) with each chunk, one at a time
        close: Called once after the last write when the writer closes
        abort: Called with the reason when the writer aborts
    """

    def __init__(
        self,
        *,
        write: Callable[[T], Awaitable[None] | None] | None = None,
        close: Callable[[], Awaitable[None] | None] | None = None,
        abort: Callable[[object], Awaitable[None] | None] | None = None,
    ) -> None:
        self._state = StreamState.WRITABLE
        self._error: BaseException | None = None
        self._writer: StreamWriter[T] | None = None
        self._lock = asyncio.Lock()
        self._write_fn, self._close_fn, self._abort_fn = write, close, abort

    def __repr__(self) -> str:
        return f"WritableStream(state={self._state}, locked={self.locked})"

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def stored_error(self) -> BaseException | None:
        return self._error

    @property
    def locked(self) -> bool:
        return self._writer is not None

    def get_writer(self) -> StreamWriter[T]:
        """Acquire the exclusive writer lock."""
        if self._writer is not None:
            raise StreamException.create("get_writer", "stream is already locked to a writer", ErrorCode.STREAM_LOCKED)
        self._writer = StreamWriter(self)
        return self._writer

    def _check_writable(self, operation: str) -> None:
        if self._state is StreamState.ERRORED:
            raise self._error  # type: ignore[misc]
        if self._state is not StreamState.WRITABLE:
            raise StreamException.create(operation, "stream is closing or closed", ErrorCode.STREAM_CLOSED)

    async def _write(self, chunk: T) -> None:
        self._check_writable("write")
        async with self._lock:
            self._check_writable("write")
            if self._write_fn is None:
                return
            try:
                await _settle(self._write_fn(chunk))
            except Exception as exc:
                self._fail(exc)
                raise

    async def _close(self) -> None:
        self._check_writable("close")
        self._state = StreamState.CLOSING
        async with self._lock:
            try:
                if self._close_fn is not None:
                    await _settle(self._close_fn())
            except Exception as exc:
                self._fail(exc)
                raise
            if self._state is StreamState.CLOSING:
                self._state = StreamState.CLOSED

    async def _abort(self, reason: object) -> None:
        if self._state in (StreamState.CLOSED, StreamState.ERRORED):
            return
        self._fail(_as_error(reason, "abort", "stream was aborted"))
        if self._abort_fn is not None:
            await _settle(self._abort_fn(reason))

    def _fail(self, exc: BaseException) -> None:
        if self._state in (StreamState.CLOSED, StreamState.ERRORED):
            return
        self._state = StreamState.ERRORED
        self._error = exc


class StreamWriter(Generic[T]):
    """Exclusive writer of a WritableStream."""

    __slots__ = ("_stream",)

    def __init__(self, stream: WritableStream[T]) -> None:
        self._stream: WritableStream[T] | None = stream

    def _owner(self, operation: str) -> WritableStream[T]:
        if self._stream is None:
            raise StreamException.create(operation, "writer lock was released", ErrorCode.WRITER_RELEASED)
        return self._stream

    async def write(self, chunk: T) -> None:
        """Write one chunk; completes once the sink has accepted it."""
        await self._owner("write")._write(chunk)

    async def close(self) -> None:
        await self._owner("close")._close()

    async def abort(self, reason: object = None) -> None:
        await self._owner("abort")._abort(reason)

    def release_lock(self) -> None:
        if (stream := self._stream) is None:
            return
        self._stream = None
        stream._writer = None


# ─────────────────────────────────────────────────────────────────────────────
# Transform Streams
# ─────────────────────────────────────────────────────────────────────────────


class Transformer(Generic[I, O]):
    """Per-stage hooks of a TransformStream. The base class passes chunks through.

    Hooks may return an awaitable. ``cancel`` runs when the stage is torn down
    from either side (readable cancelled or writable aborted); ``flush`` runs
    when the writable side closes normally. Exactly one of them runs.
    """

    __slots__ = ()

    def start(self, controller: TransformStreamController[O]) -> None:
        return None

    def transform(self, chunk: I, controller: TransformStreamController[O]) -> Awaitable[None] | None:
        controller.enqueue(chunk)  # type: ignore[arg-type]
        return None

    def flush(self, controller: TransformStreamController[O]) -> Awaitable[None] | None:
        return None

    def cancel(self, reason: object) -> Awaitable[None] | None:
        return None


class TransformStreamController(Generic[O]):
    """Handle given to Transformer hooks."""

    __slots__ = ("_owner",)

    def __init__(self, owner: TransformStream[Any, O]) -> None:
        self._owner = owner

    @property
    def desired_size(self) -> int | None:
        return self._owner.readable._desired_size()

    def enqueue(self, chunk: O) -> None:
        self._owner._enqueue(chunk)

    def error(self, exc: BaseException) -> None:
        self._owner._error_both(exc)

    def terminate(self) -> None:
        """Close the readable side and refuse further input."""
        self._owner._terminate()


class TransformStream(Generic[I, O]):
    """A readable/writable pair joined by a Transformer.

    Writes are accepted only while the readable side has a pending read, so
    the stage never buffers more than the transformer enqueues per chunk.
    """

    def __init__(self, transformer: Transformer[I, O] | None = None) -> None:
        self._transformer: Transformer[I, O] = transformer if transformer is not None else Transformer()
        self._demand = asyncio.Event()
        self._finalized = False
        self.readable: ReadableStream[O] = ReadableStream(
            pull=self._on_pull, cancel=self._on_cancel, high_water_mark=0,
        )
        self.writable: WritableStream[I] = WritableStream(
            write=self._on_write, close=self._on_close, abort=self._on_abort,
        )
        self._controller = TransformStreamController(self)
        self._transformer.start(self._controller)

    def __repr__(self) -> str:
        return f"TransformStream({type(self._transformer).__name__}, readable={self.readable.state}, writable={self.writable.state})"

    def _on_pull(self, controller: ReadableStreamController[O]) -> None:
        self._demand.set()

    async def _on_write(self, chunk: I) -> None:
        await self._demand.wait()
        if self.writable.state is StreamState.ERRORED:
            raise self.writable.stored_error  # type: ignore[misc]
        try:
            await _settle(self._transformer.transform(chunk, self._controller))
        except Exception as exc:
            self._error_both(exc)
            raise

    async def _on_close(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        try:
            await _settle(self._transformer.flush(self._controller))
        except Exception as exc:
            self._error_both(exc)
            raise
        self._close_readable()

    async def _on_abort(self, reason: object) -> None:
        self.readable._fail(_as_error(reason, "abort", "upstream aborted the stream"))
        await self._finalize(reason)

    async def _on_cancel(self, reason: object) -> None:
        self.writable._fail(_as_error(reason, "cancel", "readable side was cancelled"))
        self._demand.set()
        await self._finalize(reason)

    async def _finalize(self, reason: object) -> None:
        if self._finalized:
            return
        self._finalized = True
        await _settle(self._transformer.cancel(reason))

    def _enqueue(self, chunk: O) -> None:
        self.readable._enqueue(chunk)
        if not self.readable._has_pending_reads():
            self._demand.clear()

    def _close_readable(self) -> None:
        readable = self.readable
        if readable.state is StreamState.READABLE and not readable._close_requested:
            readable._request_close()

    def _terminate(self) -> None:
        self._close_readable()
        self.writable._fail(StreamException.create("terminate", "transform stage terminated", ErrorCode.TERMINATED))
        self._demand.set()

    def _error_both(self, exc: BaseException) -> None:
        self.readable._fail(exc)
        self.writable._fail(exc)
        self._demand.set()


# ─────────────────────────────────────────────────────────────────────────────
# Piping
# ─────────────────────────────────────────────────────────────────────────────


async def _pipe(
    reader: StreamReader[T],
    writer: StreamWriter[T],
    *,
    prevent_close: bool = False,
    prevent_abort: bool = False,
    prevent_cancel: bool = False,
) -> None:
    dest = writer._owner("pipe_to")
    try:
        while True:
            if dest.state is not StreamState.WRITABLE:
                error = dest.stored_error or StreamException.create(
                    "pipe_to", "destination closed", ErrorCode.STREAM_CLOSED,
                )
                if not prevent_cancel:
                    await reader.cancel(error)
                raise error
            try:
                step = await reader.read()
            except Exception as exc:
                if not prevent_abort:
                    await writer.abort(exc)
                raise
            if isinstance(step, Done):
                if not prevent_close:
                    await writer.close()
                return
            try:
                await writer.write(step.value)
            except Exception as exc:
                if not prevent_cancel:
                    await reader.cancel(exc)
                raise
    finally:
        reader.release_lock()
        writer.release_lock()


async def _background_pipe(reader: StreamReader[T], writer: StreamWriter[T], **options: bool) -> None:
    # Failures already reached the readable side of the destination
    try:
        await _pipe(reader, writer, **options)
    except Exception as exc:
        log.debug("pipe stopped", error=repr(exc))
