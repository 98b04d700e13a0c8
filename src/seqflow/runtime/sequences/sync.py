"""Synchronous pull-sequence combinators.

Every combinator takes one or more iterables (plain Python iterables are
wrapped on entry) and returns a PullSeq that owns its inputs: exhausting,
closing or failing the result closes or fails exactly the inputs that are
still live.

Example:
    >>> from seqflow import sync
    >>> sync.to_list(sync.take(sync.range(1, 50), 3))
    [1, 2, 3]
    >>> sync.to_list(sync.zip(sync.range(1, 4), sync.range(4, 100)))
    [(1, 4), (2, 5), (3, 6)]
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from .base import IteratorSeq, PullSeq
from .numeric import Iota, Range, iota, range
from .step import DONE, Done, Step, Value

T = TypeVar("T")
U = TypeVar("U")
A = TypeVar("A")

__all__ = [
    "PullSeq",
    "pull",
    "map",
    "filter",
    "take",
    "drop",
    "concat",
    "zip",
    "enumerate",
    "iota",
    "range",
    "to_list",
    "count",
    "reduce",
    "Iota",
    "Range",
]


def pull(source: Iterable[T]) -> PullSeq[T]:
    """Return ``source`` as a PullSeq, wrapping plain iterables."""
    return source if isinstance(source, PullSeq) else IteratorSeq(source)


# ─────────────────────────────────────────────────────────────────────────────
# Single-Source Combinators
# ─────────────────────────────────────────────────────────────────────────────


class MapSeq(PullSeq[U]):
    __slots__ = ("_source", "_fn")
    
    def __init__(self, source: Iterable[T], fn: Callable[[T], U]) -> None:
        self._source = pull(source)
        self._fn = fn
        super().__init__(self._source)
    
    def _step(self) -> Step[U]:
        step = self._pull(self._source)
        if isinstance(step, Done):
            return DONE
        return Value(self._fn(step.value))


class FilterSeq(PullSeq[T]):
    __slots__ = ("_source", "_predicate")
    
    def __init__(self, source: Iterable[T], predicate: Callable[[T], object]) -> None:
        self._source = pull(source)
        self._predicate = predicate
        super().__init__(self._source)
    
    def _step(self) -> Step[T]:
        while True:
            step = self._pull(self._source)
            if isinstance(step, Done):
                return DONE
            if self._predicate(step.value):
                return step


class TakeSeq(PullSeq[T]):
    """First ``count`` values; the source is closed as soon as the last one is pulled."""
    
    __slots__ = ("_source", "_remaining")
    
    def __init__(self, source: Iterable[T], count: int) -> None:
        self._source = pull(source)
        self._remaining = count
        super().__init__(self._source)
    
    def _step(self) -> Step[T]:
        if self._remaining <= 0:
            return DONE
        step = self._pull(self._source)
        if isinstance(step, Done):
            return DONE
        self._remaining -= 1
        if self._remaining == 0:
            self._close_sources()
        return step


class DropSeq(PullSeq[T]):
    __slots__ = ("_source", "_remaining")
    
    def __init__(self, source: Iterable[T], count: int) -> None:
        self._source = pull(source)
        self._remaining = count
        super().__init__(self._source)
    
    def _step(self) -> Step[T]:
        while self._remaining > 0:
            self._remaining -= 1
            if isinstance(self._pull(self._source), Done):
                return DONE
        step = self._pull(self._source)
        return DONE if isinstance(step, Done) else step


class EnumerateSeq(PullSeq[tuple[int, T]]):
    __slots__ = ("_source", "_index")
    
    def __init__(self, source: Iterable[T], start: int = 0) -> None:
        self._source = pull(source)
        self._index = start
        super().__init__(self._source)
    
    def _step(self) -> Step[tuple[int, T]]:
        step = self._pull(self._source)
        if isinstance(step, Done):
            return DONE
        index, self._index = self._index, self._index + 1
        return Value((index, step.value))


# ─────────────────────────────────────────────────────────────────────────────
# Multi-Source Combinators
# ─────────────────────────────────────────────────────────────────────────────


class ConcatSeq(PullSeq[T]):
    """Drains sources in order. Only the source being drained is owned."""
    
    __slots__ = ("_pending", "_current")
    
    def __init__(self, *sources: Iterable[T]) -> None:
        super().__init__()
        self._pending: deque[Iterable[T]] = deque(sources)
        self._current: PullSeq[T] | None = None
    
    def _step(self) -> Step[T]:
        while True:
            if self._current is None:
                if not self._pending:
                    return DONE
                self._current = pull(self._pending.popleft())
                self._own(self._current)
            step = self._pull(self._current)
            if isinstance(step, Value):
                return step
            self._current = None


class ZipSeq(PullSeq[tuple[T, U]]):
    """Pairs values positionally; when one side ends the other is closed."""
    
    __slots__ = ("_left", "_right")
    
    def __init__(self, left: Iterable[T], right: Iterable[U]) -> None:
        self._left, self._right = pull(left), pull(right)
        super().__init__(self._left, self._right)
    
    def _step(self) -> Step[tuple[T, U]]:
        left = self._pull(self._left)
        if isinstance(left, Done):
            return DONE
        right = self._pull(self._right)
        if isinstance(right, Done):
            return DONE
        return Value((left.value, right.value))


def map(source: Iterable[T], fn: Callable[[T], U]) -> PullSeq[U]:  # noqa: A001
    """Apply ``fn`` to each value, once per value, in order."""
    return MapSeq(source, fn)


def filter(source: Iterable[T], predicate: Callable[[T], object]) -> PullSeq[T]:  # noqa: A001
    """Keep values for which ``predicate`` is truthy; called once per input value."""
    return FilterSeq(source, predicate)


def take(source: Iterable[T], count: int) -> PullSeq[T]:
    """At most the first ``count`` values; nothing for ``count <= 0``."""
    return TakeSeq(source, count)


def drop(source: Iterable[T], count: int) -> PullSeq[T]:
    """Skip the first ``count`` values, pass the rest through."""
    return DropSeq(source, count)


def concat(*sources: Iterable[T]) -> PullSeq[T]:
    """All values of each source, one source after another."""
    return ConcatSeq(*sources)


def zip(left: Iterable[T], right: Iterable[U]) -> PullSeq[tuple[T, U]]:  # noqa: A001
    """Pairs ``(l, r)`` for as many steps as the shorter source allows."""
    return ZipSeq(left, right)


def enumerate(source: Iterable[T], start: int = 0) -> PullSeq[tuple[int, T]]:  # noqa: A001
    """Pairs ``(index, value)`` counting emitted values from ``start``."""
    return EnumerateSeq(source, start)


# ─────────────────────────────────────────────────────────────────────────────
# Terminal Consumers
# ─────────────────────────────────────────────────────────────────────────────


def to_list(source: Iterable[T]) -> list[T]:
    """Drain ``source`` into a list."""
    return [*pull(source)]


def count(source: Iterable[Any]) -> int:
    """Drain ``source`` and return how many values it produced."""
    return sum(1 for _ in pull(source))


def reduce(source: Iterable[T], fn: Callable[[A, T], A], initial: A) -> A:
    """Fold ``source`` with ``fn``. If ``fn`` raises, the source is failed first."""
    seq = pull(source)
    acc = initial
    for value in seq:
        try:
            acc = fn(acc, value)
        except Exception as exc:
            seq.fail(exc)
    return acc
