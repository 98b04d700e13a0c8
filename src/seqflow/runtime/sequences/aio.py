"""Asynchronous pull-sequence combinators.

Same operator shapes as ``seqflow.sync`` over awaited values. Inputs may be
AsyncPullSeq instances, async iterables (generators, ``aiter``-capable
objects), ReadableStreams, or synchronous sequences and iterables (bridged so
that ``finish``/``abort`` become ``close``/``fail``); callbacks may be plain
functions or return awaitables.

Termination protocol:
    Each combinator owns its live inputs. ``finish(value)`` forwards
    ``finish`` to them and resolves ``Done(value)``; ``abort(error)`` forwards
    ``abort`` (swallowing forwarding failures) and re-raises ``error``. A
    raising callback or input aborts the combinator the same way before the
    error reaches the caller.

Example:
    >>> from seqflow import aio
    >>> await aio.to_list(aio.zip(source_a, source_b))
    [(1, 4), (2, 5), (3, 6)]
    >>> async with contextlib.aclosing(aio.map(source, fetch)) as results:
    ...     async for result in results:
    ...         if result.final:
    ...             break          # source is finished on exit
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import AsyncIterable, Awaitable, Callable, Iterable
from typing import Any, TypeVar, Union

from seqflow.runtime.streams.adapter import iterate_stream
from seqflow.runtime.streams.primitive import ReadableStream

from .base import AsyncIteratorSeq, AsyncPullSeq, PullSeq
from .step import DONE, Done, Step, Value
from .sync import pull

T = TypeVar("T")
U = TypeVar("U")
A = TypeVar("A")

AsyncSource = Union[AsyncPullSeq[T], AsyncIterable[T], ReadableStream[T], Iterable[T]]

__all__ = [
    "AsyncPullSeq",
    "AsyncSource",
    "SyncBridgeSeq",
    "apull",
    "map",
    "filter",
    "take",
    "drop",
    "concat",
    "zip",
    "enumerate",
    "iterate_stream",
    "to_list",
    "count",
    "reduce",
]


class SyncBridgeSeq(AsyncPullSeq[T]):
    """AsyncPullSeq driving a synchronous PullSeq. ``finish``/``abort`` map to ``close``/``fail``."""
    
    __slots__ = ("_inner",)
    
    def __init__(self, inner: PullSeq[T]) -> None:
        super().__init__()
        self._inner = inner
    
    async def _step(self) -> Step[T]:
        return self._inner.advance()
    
    async def _release(self, error: BaseException | None) -> None:
        if self._inner.finished:
            return
        if error is None:
            self._inner.close()
            return
        try:
            self._inner.fail(error)
        except BaseException as exc:
            if exc is not error:
                raise


def apull(source: AsyncSource[T]) -> AsyncPullSeq[T]:
    """Return ``source`` as an AsyncPullSeq."""
    match source:
        case AsyncPullSeq():
            return source
        case ReadableStream():
            return iterate_stream(source)
        case AsyncIterable():
            return AsyncIteratorSeq(source)
        case Iterable():
            return SyncBridgeSeq(pull(source))
        case _:
            raise TypeError(f"cannot pull from {type(source).__name__}")


async def _resolve(result: U | Awaitable[U]) -> U:
    if inspect.isawaitable(result):
        return await result
    return result


# ─────────────────────────────────────────────────────────────────────────────
# Single-Source Combinators
# ─────────────────────────────────────────────────────────────────────────────


class MapSeq(AsyncPullSeq[U]):
    __slots__ = ("_source", "_fn")
    
    def __init__(self, source: AsyncSource[T], fn: Callable[[T], U | Awaitable[U]]) -> None:
        self._source = apull(source)
        self._fn = fn
        super().__init__(self._source)
    
    async def _step(self) -> Step[U]:
        step = await self._pull(self._source)
        if isinstance(step, Done):
            return DONE
        return Value(await _resolve(self._fn(step.value)))


class FilterSeq(AsyncPullSeq[T]):
    __slots__ = ("_source", "_predicate")
    
    def __init__(self, source: AsyncSource[T], predicate: Callable[[T], object]) -> None:
        self._source = apull(source)
        self._predicate = predicate
        super().__init__(self._source)
    
    async def _step(self) -> Step[T]:
        while True:
            step = await self._pull(self._source)
            if isinstance(step, Done):
                return DONE
            if await _resolve(self._predicate(step.value)):
                return step


class TakeSeq(AsyncPullSeq[T]):
    """First ``count`` values; the source is finished before the last one is returned."""
    
    __slots__ = ("_source", "_remaining")
    
    def __init__(self, source: AsyncSource[T], count: int) -> None:
        self._source = apull(source)
        self._remaining = count
        super().__init__(self._source)
    
    async def _step(self) -> Step[T]:
        if self._remaining <= 0:
            return DONE
        step = await self._pull(self._source)
        if isinstance(step, Done):
            return DONE
        self._remaining -= 1
        if self._remaining == 0:
            await self._finish_sources()
        return step


class DropSeq(AsyncPullSeq[T]):
    __slots__ = ("_source", "_remaining")
    
    def __init__(self, source: AsyncSource[T], count: int) -> None:
        self._source = apull(source)
        self._remaining = count
        super().__init__(self._source)
    
    async def _step(self) -> Step[T]:
        while self._remaining > 0:
            self._remaining -= 1
            if isinstance(await self._pull(self._source), Done):
                return DONE
        step = await self._pull(self._source)
        return DONE if isinstance(step, Done) else step


class EnumerateSeq(AsyncPullSeq[tuple[int, T]]):
    __slots__ = ("_source", "_index")
    
    def __init__(self, source: AsyncSource[T], start: int = 0) -> None:
        self._source = apull(source)
        self._index = start
        super().__init__(self._source)
    
    async def _step(self) -> Step[tuple[int, T]]:
        step = await self._pull(self._source)
        if isinstance(step, Done):
            return DONE
        index, self._index = self._index, self._index + 1
        return Value((index, step.value))


# ─────────────────────────────────────────────────────────────────────────────
# Multi-Source Combinators
# ─────────────────────────────────────────────────────────────────────────────


class ConcatSeq(AsyncPullSeq[T]):
    """Drains sources in order. Only the source being drained is owned."""
    
    __slots__ = ("_pending", "_current")
    
    def __init__(self, *sources: AsyncSource[T]) -> None:
        super().__init__()
        self._pending: deque[AsyncSource[T]] = deque(sources)
        self._current: AsyncPullSeq[T] | None = None
    
    async def _step(self) -> Step[T]:
        while True:
            if self._current is None:
                if not self._pending:
                    return DONE
                self._current = apull(self._pending.popleft())
                self._own(self._current)
            step = await self._pull(self._current)
            if isinstance(step, Value):
                return step
            self._current = None


class ZipSeq(AsyncPullSeq[tuple[T, U]]):
    """Pairs values positionally, advancing both sources concurrently.
    
    When either source reports Done the still-live one is finished; when
    either raises the other is aborted.
    """
    
    __slots__ = ("_left", "_right")
    
    def __init__(self, left: AsyncSource[T], right: AsyncSource[U]) -> None:
        self._left, self._right = apull(left), apull(right)
        super().__init__(self._left, self._right)
    
    async def _step(self) -> Step[tuple[T, U]]:
        left, right = await asyncio.gather(
            self._pull(self._left), self._pull(self._right), return_exceptions=True,
        )
        for outcome in (left, right):
            if isinstance(outcome, BaseException):
                raise outcome
        if isinstance(left, Done) or isinstance(right, Done):
            return DONE
        return Value((left.value, right.value))


def map(source: AsyncSource[T], fn: Callable[[T], U | Awaitable[U]]) -> AsyncPullSeq[U]:  # noqa: A001
    """Apply ``fn`` (awaiting its result if needed) to each value, in order."""
    return MapSeq(source, fn)


def filter(source: AsyncSource[T], predicate: Callable[[T], object]) -> AsyncPullSeq[T]:  # noqa: A001
    """Keep values for which ``predicate`` (awaited if needed) is truthy."""
    return FilterSeq(source, predicate)


def take(source: AsyncSource[T], count: int) -> AsyncPullSeq[T]:
    """At most the first ``count`` values; nothing for ``count <= 0``."""
    return TakeSeq(source, count)


def drop(source: AsyncSource[T], count: int) -> AsyncPullSeq[T]:
    """Skip the first ``count`` values, pass the rest through."""
    return DropSeq(source, count)


def concat(*sources: AsyncSource[T]) -> AsyncPullSeq[T]:
    """All values of each source, one source after another."""
    return ConcatSeq(*sources)


def zip(left: AsyncSource[T], right: AsyncSource[U]) -> AsyncPullSeq[tuple[T, U]]:  # noqa: A001
    """Pairs ``(l, r)`` for as many steps as the shorter source allows."""
    return ZipSeq(left, right)


def enumerate(source: AsyncSource[T], start: int = 0) -> AsyncPullSeq[tuple[int, T]]:  # noqa: A001
    """Pairs ``(index, value)`` counting emitted values from ``start``."""
    return EnumerateSeq(source, start)


# ─────────────────────────────────────────────────────────────────────────────
# Terminal Consumers
# ─────────────────────────────────────────────────────────────────────────────


async def to_list(source: AsyncSource[T]) -> list[T]:
    """Drain ``source`` into a list."""
    return [value async for value in apull(source)]


async def count(source: AsyncSource[Any]) -> int:
    """Drain ``source`` and return how many values it produced."""
    total = 0
    async for _ in apull(source):
        total += 1
    return total


async def reduce(source: AsyncSource[T], fn: Callable[[A, T], A | Awaitable[A]], initial: A) -> A:
    """Fold ``source`` with ``fn``. If ``fn`` raises, the source is aborted first."""
    seq = apull(source)
    acc = initial
    async for value in seq:
        try:
            acc = await _resolve(fn(acc, value))
        except Exception as exc:
            await seq.abort(exc)
    return acc
