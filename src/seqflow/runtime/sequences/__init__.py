"""Pull sequences: step values, sequence bases and their combinator families.

- sync: combinators over synchronous pull sequences and plain iterables
- aio: the same combinators over async pull sequences, async iterables and streams
"""

from .base import AsyncIteratorSeq, AsyncPullSeq, IteratorSeq, PullSeq
from .numeric import Iota, Range, iota, range
from .step import DONE, Done, Step, Value

from . import sync  # isort: skip
from . import aio  # isort: skip

__all__ = [
    "DONE",
    "Done",
    "Step",
    "Value",
    "PullSeq",
    "AsyncPullSeq",
    "IteratorSeq",
    "AsyncIteratorSeq",
    "Iota",
    "Range",
    "iota",
    "range",
    "sync",
    "aio",
]
