"""Numeric generators: unbounded and bounded integer pull sequences.

Each instance is a one-shot cursor; re-invoke the constructor to restart.

Example:
    >>> from seqflow import sync
    >>> sync.to_list(sync.take(iota(10, 2), 3))
    [10, 12, 14]
    >>> list(range(5, 0, -2))
    [5, 3, 1]
"""

from __future__ import annotations

from .base import PullSeq
from .step import DONE, Step, Value

__all__ = ["Iota", "Range", "iota", "range"]


class Iota(PullSeq[int]):
    """Unbounded arithmetic progression ``start, start + step, ...``."""
    
    __slots__ = ("_next", "_increment")
    
    def __init__(self, start: int = 0, step: int = 1) -> None:
        super().__init__()
        self._next = start
        self._increment = step
    
    def _step(self) -> Step[int]:
        value = self._next
        self._next += self._increment
        return Value(value)


class Range(PullSeq[int]):
    """Arithmetic progression from ``start`` up to, but excluding, ``end``."""
    
    __slots__ = ("_next", "_end", "_increment")
    
    def __init__(self, start: int, end: int, step: int = 1) -> None:
        if step == 0:
            raise ValueError("range() step must not be zero")
        super().__init__()
        self._next, self._end, self._increment = start, end, step
    
    def _step(self) -> Step[int]:
        value = self._next
        if (self._increment > 0 and value >= self._end) or (self._increment < 0 and value <= self._end):
            return DONE
        self._next += self._increment
        return Value(value)


def iota(start: int = 0, step: int = 1) -> Iota:
    """Infinite sequence counting from ``start`` by ``step``."""
    return Iota(start, step)


def range(start: int, end: int, step: int = 1) -> Range:  # noqa: A001
    """Sequence counting from ``start`` by ``step``, stopping before ``end``."""
    return Range(start, end, step)
