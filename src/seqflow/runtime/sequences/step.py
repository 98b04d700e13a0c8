"""Step values produced by advancing a sequence.

A step is either ``Value(value)`` (one element) or ``Done(value)``
(completion, optionally carrying the value handed to ``finish``/``close``).
Streams use the same types for their read results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True, frozen=True)
class Value(Generic[T]):
    """One element pulled from a sequence."""
    value: T


@dataclass(slots=True, frozen=True)
class Done(Generic[R]):
    """Completion marker; ``value`` is the return value, if any."""
    value: R | None = None


DONE: Done[None] = Done()

Step = Union[Value[T], Done[Any]]
