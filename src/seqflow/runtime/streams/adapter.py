"""Adapter from a backpressured stream to an async pull sequence.

``iterate_stream`` locks the stream's reader for the lifetime of the
returned sequence. How the sequence lets go of the stream depends on how it
ends:

    - stream closed on its own: lock released, no cancel
    - ``finish(value)``: ``cancel()`` then release, or release only with ``prevent_cancel``
    - ``abort(error)``: ``cancel(error)`` then release, or release only with ``prevent_cancel``

``prevent_cancel`` exists for streams the caller still needs afterwards:
the lock is exclusive, and cancelling would end the stream for every later
consumer.

Example:
    >>> seq = iterate_stream(stream, prevent_cancel=True)
    >>> first = await seq.advance()
    >>> await seq.finish()      # stream stays open and unlocked
    >>> rest = await aio.to_list(stream)
"""

from __future__ import annotations

from typing import TypeVar

from seqflow.runtime.observability.logging import get_logger
from seqflow.runtime.sequences.base import AsyncPullSeq
from seqflow.runtime.sequences.step import Done, Step

from .primitive import ReadableStream, StreamReader

T = TypeVar("T")

__all__ = ["StreamIterator", "iterate_stream"]

log = get_logger("seqflow.streams.adapter")


class StreamIterator(AsyncPullSeq[T]):
    """AsyncPullSeq reading from a locked ReadableStream."""
    
    __slots__ = ("_reader", "_prevent_cancel", "_ended")
    
    def __init__(self, stream: ReadableStream[T], *, prevent_cancel: bool = False) -> None:
        super().__init__()
        self._reader: StreamReader[T] = stream.get_reader()
        self._prevent_cancel = prevent_cancel
        self._ended = False
    
    async def _step(self) -> Step[T]:
        try:
            step = await self._reader.read()
        except Exception:
            self._ended = True
            raise
        if isinstance(step, Done):
            self._ended = True
        return step
    
    async def _release(self, error: BaseException | None) -> None:
        try:
            if not self._ended and not self._prevent_cancel:
                await self._reader.cancel(error)
        except Exception as exc:
            log.debug("stream cancel failed", error=repr(exc))
        finally:
            self._reader.release_lock()
            log.debug("reader released", ended=self._ended, cancelled=not (self._ended or self._prevent_cancel))


def iterate_stream(stream: ReadableStream[T], *, prevent_cancel: bool = False) -> StreamIterator[T]:
    """Lock ``stream`` and expose it as an async pull sequence."""
    return StreamIterator(stream, prevent_cancel=prevent_cancel)
