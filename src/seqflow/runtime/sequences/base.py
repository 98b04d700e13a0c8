"""Pull sequence state machines and the termination protocol.

Every sequence is an explicit state machine driven through ``advance()``.
A sequence built on top of other sequences *owns* them: it keeps them in an
ownership list, drops a source from that list the moment the source reports
``Done`` or raises, and forwards termination only to sources still listed.
That gives the two guarantees the combinators rely on:

    - each upstream source receives at most one termination call
    - sources that already finished are never touched again

Sync sequences terminate with ``close(value)`` / ``fail(error)``, async ones
with ``finish(value)`` / ``abort(error)``. Once a sequence is done, further
``advance()`` calls return ``DONE`` without side effects.

Example:
    >>> class Countdown(PullSeq[int]):
    ...     def __init__(self, n: int) -> None:
    ...         super().__init__()
    ...         self.n = n
    ...     def _step(self) -> Step[int]:
    ...         if self.n == 0:
    ...             return DONE
    ...         self.n -= 1
    ...         return Value(self.n + 1)
    >>> list(Countdown(3))
    [3, 2, 1]
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Any, Generic, NoReturn, TypeVar

from seqflow.runtime.observability.logging import get_logger

from .step import DONE, Done, Step, Value

T = TypeVar("T")

log = get_logger("seqflow.sequences")


# ─────────────────────────────────────────────────────────────────────────────
# Synchronous Pull Sequences
# ─────────────────────────────────────────────────────────────────────────────


class PullSeq(ABC, Generic[T]):
    """Synchronous pull sequence with owned upstream sources.
    
    Subclasses implement ``_step()`` and pull upstream values through
    ``_pull(source)`` so ownership is tracked. ``_release(error)`` is called
    exactly once when the sequence terminates, after its sources.
    """
    
    __slots__ = ("_sources", "_finished")
    
    def __init__(self, *sources: PullSeq[Any]) -> None:
        self._sources: list[PullSeq[Any]] = list(sources)
        self._finished = False
    
    @property
    def finished(self) -> bool:
        """Whether the sequence reached Done or was terminated."""
        return self._finished
    
    @abstractmethod
    def _step(self) -> Step[T]:
        """Produce the next step. Only called while the sequence is live."""
    
    def advance(self) -> Step[T]:
        """Pull the next value, or DONE. Idempotent after completion."""
        if self._finished:
            return DONE
        try:
            step = self._step()
        except BaseException as exc:
            self._shutdown(exc)
            raise
        if isinstance(step, Done):
            self._shutdown(None)
        return step
    
    def close(self, value: object = None) -> Done[Any]:
        """Stop early: close every owned live source, then report Done(value)."""
        if not self._finished:
            self._shutdown(None)
        return Done(value)
    
    def fail(self, error: BaseException) -> NoReturn:
        """Stop on error: fail every owned live source, then raise ``error``."""
        if not self._finished:
            self._shutdown(error)
        raise error
    
    def _pull(self, source: PullSeq[Any]) -> Step[Any]:
        try:
            step = source.advance()
        except BaseException:
            self._disown(source)
            raise
        if isinstance(step, Done):
            self._disown(source)
        return step
    
    def _own(self, source: PullSeq[Any]) -> None:
        self._sources.append(source)
    
    def _disown(self, source: PullSeq[Any]) -> None:
        self._sources = [s for s in self._sources if s is not source]
    
    def _close_sources(self) -> None:
        """Close owned sources while this sequence itself stays live."""
        sources, self._sources = self._sources, []
        for source in sources:
            source.close()
    
    def _shutdown(self, error: BaseException | None) -> None:
        self._finished = True
        sources, self._sources = self._sources, []
        for source in sources:
            try:
                if error is None:
                    source.close()
                else:
                    source.fail(error)
            except BaseException as exc:
                if exc is error:
                    continue
                if not isinstance(exc, Exception):
                    raise
                log.debug("source termination failure swallowed", seq=type(self).__name__, error=repr(exc))
        self._release(error)
    
    def _release(self, error: BaseException | None) -> None:
        """Release resources held directly by this sequence."""
    
    def __iter__(self) -> Iterator[T]:
        return self
    
    def __next__(self) -> T:
        step = self.advance()
        if isinstance(step, Done):
            raise StopIteration
        return step.value


class IteratorSeq(PullSeq[T]):
    """PullSeq over a plain Python iterable. Closing closes the underlying generator."""
    
    __slots__ = ("_iterator",)
    
    def __init__(self, iterable: Iterable[T]) -> None:
        super().__init__()
        self._iterator: Iterator[T] = iter(iterable)
    
    def _step(self) -> Step[T]:
        try:
            return Value(next(self._iterator))
        except StopIteration as stop:
            return Done(stop.value)
    
    def _release(self, error: BaseException | None) -> None:
        if (close := getattr(self._iterator, "close", None)) is not None:
            close()


# ─────────────────────────────────────────────────────────────────────────────
# Asynchronous Pull Sequences
# ─────────────────────────────────────────────────────────────────────────────


class AsyncPullSeq(ABC, Generic[T]):
    """Asynchronous pull sequence with owned upstream sources.
    
    Mirrors PullSeq with awaited steps. ``finish``/``abort`` form the
    out-of-band termination protocol; both release everything the sequence
    owns before they return or raise.
    
    Supports ``async for``; wrap in ``contextlib.aclosing`` to have an early
    ``break`` finish the pipeline.
    """
    
    __slots__ = ("_sources", "_finished")
    
    def __init__(self, *sources: AsyncPullSeq[Any]) -> None:
        self._sources: list[AsyncPullSeq[Any]] = list(sources)
        self._finished = False
    
    @property
    def finished(self) -> bool:
        """Whether the sequence reached Done or was terminated."""
        return self._finished
    
    @abstractmethod
    async def _step(self) -> Step[T]:
        """Produce the next step. Only called while the sequence is live."""
    
    async def advance(self) -> Step[T]:
        """Pull the next value, or DONE. Idempotent after completion.
    
        A step in flight when the sequence is terminated still completes and
        returns its result; the termination already released everything.
        Cancellation of the awaiting task aborts the owned sources with the
        ``CancelledError`` before it propagates.
        """
        if self._finished:
            return DONE
        try:
            step = await self._step()
        except BaseException as exc:
            if not self._finished:
                await self._shutdown(exc)
            raise
        if isinstance(step, Done) and not self._finished:
            await self._shutdown(None)
        return step
    
    async def finish(self, value: object = None) -> Done[Any]:
        """Stop early: finish every owned live source, then resolve Done(value)."""
        if not self._finished:
            await self._shutdown(None)
        return Done(value)
    
    async def abort(self, error: BaseException) -> NoReturn:
        """Stop on error: abort every owned live source, then raise ``error``."""
        if not self._finished:
            await self._shutdown(error)
        raise error
    
    async def aclose(self) -> None:
        await self.finish()
    
    async def _pull(self, source: AsyncPullSeq[Any]) -> Step[Any]:
        try:
            step = await source.advance()
        except BaseException:
            self._disown(source)
            raise
        if isinstance(step, Done):
            self._disown(source)
        return step
    
    def _own(self, source: AsyncPullSeq[Any]) -> None:
        self._sources.append(source)
    
    def _disown(self, source: AsyncPullSeq[Any]) -> None:
        self._sources = [s for s in self._sources if s is not source]
    
    async def _finish_sources(self) -> None:
        """Finish owned sources while this sequence itself stays live."""
        sources, self._sources = self._sources, []
        for source in sources:
            await source.finish()
    
    async def _shutdown(self, error: BaseException | None) -> None:
        self._finished = True
        sources, self._sources = self._sources, []
        for source in sources:
            try:
                if error is None:
                    await source.finish()
                else:
                    await source.abort(error)
            except BaseException as exc:
                if exc is error:
                    continue
                if not isinstance(exc, Exception):
                    raise
                log.debug("source termination failure swallowed", seq=type(self).__name__, error=repr(exc))
        await self._release(error)
    
    async def _release(self, error: BaseException | None) -> None:
        """Release resources held directly by this sequence."""
    
    def __aiter__(self) -> AsyncIterator[T]:
        return self
    
    async def __anext__(self) -> T:
        step = await self.advance()
        if isinstance(step, Done):
            raise StopAsyncIteration
        return step.value


class AsyncIteratorSeq(AsyncPullSeq[T]):
    """AsyncPullSeq over a plain async iterable. Termination closes async generators.
    
    A generator cannot be closed while ``anext`` is running, so a termination
    that lands mid-step defers the close until that step returns.
    """
    
    __slots__ = ("_iterator", "_stepping", "_close_deferred")
    
    def __init__(self, iterable: AsyncIterable[T]) -> None:
        super().__init__()
        self._iterator: AsyncIterator[T] = aiter(iterable)
        self._stepping = False
        self._close_deferred = False
    
    async def _step(self) -> Step[T]:
        self._stepping = True
        try:
            return Value(await anext(self._iterator))
        except StopAsyncIteration:
            return DONE
        finally:
            self._stepping = False
            if self._close_deferred:
                self._close_deferred = False
                await self._close_iterator()
    
    async def _release(self, error: BaseException | None) -> None:
        if self._stepping:
            self._close_deferred = True
            return
        await self._close_iterator()
    
    async def _close_iterator(self) -> None:
        if (aclose := getattr(self._iterator, "aclose", None)) is not None:
            await aclose()
