"""Tests for async pull-sequence combinators and the termination protocol.

Validates:
- Operator results over async, sync and generator sources
- finish/abort forwarding to owned, still-live sources only
- Concurrent pulls in zip
- Cleanup before errors reach the caller
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

import pytest

from seqflow import DONE, AsyncPullSeq, Done, ReadableStream, Step, Value, aio, sync
from seqflow.foundation.testing import RecordingAsyncRange, RecordingRange


class Gated(AsyncPullSeq[str]):
    """Produces one value per step, but only once ``gate`` is set."""
    
    def __init__(self, name: str, started: asyncio.Event, gate: asyncio.Event) -> None:
        super().__init__()
        self.name = name
        self.started = started
        self.gate = gate
    
    async def _step(self) -> Step[str]:
        self.started.set()
        await self.gate.wait()
        return Value(self.name)


class BrokenRelease(RecordingAsyncRange):
    """Range whose own cleanup raises after it has been recorded."""
    
    async def _release(self, error: BaseException | None) -> None:
        await super()._release(error)
        raise RuntimeError("close failed")


# ─────────────────────────────────────────────────────────────────────────────
# Operators
# ─────────────────────────────────────────────────────────────────────────────


class TestOperators:
    """Tests for single-source async combinators."""
    
    @pytest.mark.asyncio
    async def test_take_finishes_source_after_last_value(self) -> None:
        source = RecordingAsyncRange(1, 50)
        seq = aio.take(source, 3)
        
        assert await seq.advance() == Value(1)
        assert await seq.advance() == Value(2)
        assert source.finishes == 0
        assert await seq.advance() == Value(3)
        assert source.finishes == 1
        assert await seq.advance() is DONE
        assert source.pulls == 3
    
    @pytest.mark.asyncio
    async def test_take_zero(self) -> None:
        source = RecordingAsyncRange(1, 50)
        assert await aio.to_list(aio.take(source, -1)) == []
        assert source.pulls == 0
        assert source.finishes == 1
    
    @pytest.mark.asyncio
    async def test_drop(self) -> None:
        assert await aio.to_list(aio.drop(RecordingAsyncRange(1, 11), 3)) == [4, 5, 6, 7, 8, 9, 10]
    
    @pytest.mark.asyncio
    async def test_map_awaits_coroutine_results(self) -> None:
        async def square(n: int) -> int:
            await asyncio.sleep(0)
            return n * n
        
        assert await aio.to_list(aio.map(RecordingAsyncRange(0, 4), square)) == [0, 1, 4, 9]
    
    @pytest.mark.asyncio
    async def test_map_error_aborts_source(self) -> None:
        source = RecordingAsyncRange(1, 10)
        
        async def check(n: int) -> int:
            if n == 2:
                raise ValueError("rejected")
            return n
        
        with pytest.raises(ValueError, match="rejected"):
            await aio.to_list(aio.map(source, check))
        assert len(source.aborts) == 1
        assert source.finishes == 0
    
    @pytest.mark.asyncio
    async def test_filter_with_async_predicate(self) -> None:
        seen: list[int] = []
        
        async def odd(n: int) -> bool:
            seen.append(n)
            return n % 2 == 1
        
        assert await aio.to_list(aio.filter(RecordingAsyncRange(0, 6), odd)) == [1, 3, 5]
        assert seen == [0, 1, 2, 3, 4, 5]
    
    @pytest.mark.asyncio
    async def test_enumerate_after_filter(self) -> None:
        evens = aio.filter(RecordingAsyncRange(0, 7), lambda n: n % 2 == 0)
        assert await aio.to_list(aio.enumerate(evens)) == [(0, 0), (1, 2), (2, 4), (3, 6)]


# ─────────────────────────────────────────────────────────────────────────────
# Fan-In
# ─────────────────────────────────────────────────────────────────────────────


class TestConcatZip:
    """Tests for concat and zip."""
    
    @pytest.mark.asyncio
    async def test_concat_in_order(self) -> None:
        seq = aio.concat(RecordingAsyncRange(1, 4), RecordingAsyncRange(4, 7), RecordingAsyncRange(7, 10))
        assert await aio.to_list(seq) == [1, 2, 3, 4, 5, 6, 7, 8, 9]
    
    @pytest.mark.asyncio
    async def test_concat_finish_reaches_inflight_source_only(self) -> None:
        first, second, third = RecordingAsyncRange(1, 4), RecordingAsyncRange(4, 7), RecordingAsyncRange(7, 10)
        seq = aio.concat(first, second, third)
        for expected in (1, 2, 3, 4):
            assert await seq.advance() == Value(expected)
        
        assert await seq.finish("early") == Done("early")
        assert first.terminations == 0
        assert second.finishes == 1
        assert third.pulls == 0
        assert third.terminations == 0
    
    @pytest.mark.asyncio
    async def test_zip_finishes_longer_input(self) -> None:
        left, right = RecordingAsyncRange(1, 4), RecordingAsyncRange(4, 100)
        assert await aio.to_list(aio.zip(left, right)) == [(1, 4), (2, 5), (3, 6)]
        assert right.finishes == 1
        assert right.terminations == 1
        assert left.terminations == 0
    
    @pytest.mark.asyncio
    async def test_zip_pulls_both_sides_concurrently(self) -> None:
        """Left can only complete after right's pull has started."""
        right_started = asyncio.Event()
        left = Gated("left", asyncio.Event(), right_started)
        right = Gated("right", right_started, asyncio.Event())
        right.gate.set()
        
        step = await asyncio.wait_for(aio.zip(left, right).advance(), timeout=1)
        assert step == Value(("left", "right"))
    
    @pytest.mark.asyncio
    async def test_zip_error_aborts_other_side(self) -> None:
        left, right = RecordingAsyncRange(1, 10, fail_at=3), RecordingAsyncRange(0, 100)
        with pytest.raises(RuntimeError, match="failed at 3"):
            await aio.to_list(aio.zip(left, right))
        assert len(right.aborts) == 1
        assert left.terminations == 0


# ─────────────────────────────────────────────────────────────────────────────
# Termination Protocol
# ─────────────────────────────────────────────────────────────────────────────


class TestTermination:
    """Tests for finish, abort and idempotence."""
    
    @pytest.mark.asyncio
    async def test_advance_after_done_is_noop(self) -> None:
        source = RecordingAsyncRange(0, 2)
        seq = aio.map(source, lambda n: n + 1)
        assert await aio.to_list(seq) == [1, 2]
        pulls = source.pulls
        for _ in range(3):
            assert await seq.advance() is DONE
        assert source.pulls == pulls
    
    @pytest.mark.asyncio
    async def test_finish_forwards_once(self) -> None:
        source = RecordingAsyncRange(0, 10)
        seq = aio.enumerate(source)
        await seq.advance()
        assert await seq.finish(7) == Done(7)
        assert await seq.finish() == Done(None)
        assert source.finishes == 1
    
    @pytest.mark.asyncio
    async def test_abort_forwards_and_reraises(self) -> None:
        source = RecordingAsyncRange(0, 10)
        seq = aio.drop(source, 2)
        error = LookupError("gone")
        with pytest.raises(LookupError) as info:
            await seq.abort(error)
        assert info.value is error
        assert source.aborts == [error]
    
    @pytest.mark.asyncio
    async def test_abort_swallows_forwarding_failure(self) -> None:
        async def brittle() -> AsyncIterator[int]:
            try:
                yield 1
                yield 2
            finally:
                raise OSError("cleanup failed")
        
        seq = aio.map(brittle(), str)
        assert await seq.advance() == Value("1")
        with pytest.raises(ValueError, match="original"):
            await seq.abort(ValueError("original"))
    
    @pytest.mark.asyncio
    async def test_break_inside_aclosing_finishes_source(self) -> None:
        source = RecordingAsyncRange(0, 100)
        seen: list[int] = []
        async with contextlib.aclosing(aio.map(source, lambda n: n * 10)) as values:
            async for value in values:
                seen.append(value)
                if value == 20:
                    break
        assert seen == [0, 10, 20]
        assert source.finishes == 1
    
    @pytest.mark.asyncio
    async def test_async_generator_closed_on_finish(self) -> None:
        closed: list[bool] = []
        
        async def ticks() -> AsyncIterator[int]:
            try:
                n = 0
                while True:
                    yield n
                    n += 1
            finally:
                closed.append(True)
        
        assert await aio.to_list(aio.take(ticks(), 3)) == [0, 1, 2]
        assert closed == [True]
    
    @pytest.mark.asyncio
    async def test_finish_during_inflight_advance_releases_once(self) -> None:
        source = RecordingAsyncRange(0, 0)
        seq = aio.map(source, lambda n: n)
        pending = asyncio.create_task(seq.advance())
        await asyncio.sleep(0)
        
        assert await seq.finish() == Done(None)
        assert await pending is DONE
        assert source.finishes == 1
        assert source.releases == 1
    
    @pytest.mark.asyncio
    async def test_finish_during_generator_step_closes_after_step(self) -> None:
        gate = asyncio.Event()
        closed: list[bool] = []
        
        async def slow() -> AsyncIterator[int]:
            try:
                await gate.wait()
                yield 1
                yield 2
            finally:
                closed.append(True)
        
        seq = aio.map(slow(), lambda n: n * 10)
        pending = asyncio.create_task(seq.advance())
        await asyncio.sleep(0)
        
        assert await seq.finish() == Done(None)
        assert closed == []
        gate.set()
        assert await pending == Value(10)
        assert closed == [True]
        assert await seq.advance() is DONE
    
    @pytest.mark.asyncio
    async def test_failing_finish_still_reaches_other_sources(self) -> None:
        left, right = BrokenRelease(0, 100), RecordingAsyncRange(0, 100)
        seq = aio.zip(left, right)
        assert await seq.advance() == Value((0, 0))
        
        assert await seq.finish() == Done(None)
        assert left.finishes == 1
        assert right.finishes == 1
        assert right.releases == 1
        assert seq.finished


# ─────────────────────────────────────────────────────────────────────────────
# Cancellation
# ─────────────────────────────────────────────────────────────────────────────


class TestCancellation:
    """Tests for consumer tasks cancelled mid-advance."""
    
    @pytest.mark.asyncio
    async def test_cancelled_advance_aborts_sources(self) -> None:
        started, gate = asyncio.Event(), asyncio.Event()
        source = Gated("a", started, gate)
        seq = aio.map(source, str.upper)
        pending = asyncio.create_task(seq.advance())
        await started.wait()
        
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        assert source.finished
        assert seq.finished
        assert await seq.advance() is DONE
    
    @pytest.mark.asyncio
    async def test_timeout_over_stalled_stream_releases_lock(self) -> None:
        reasons: list[object] = []
        stream: ReadableStream[int] = ReadableStream(pull=lambda controller: None, cancel=reasons.append)
        seq = aio.map(stream, lambda n: n)
        
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(aio.to_list(seq), 0.05)
        assert seq.finished
        assert not stream.locked
        assert len(reasons) == 1
        assert isinstance(reasons[0], asyncio.CancelledError)


# ─────────────────────────────────────────────────────────────────────────────
# Sync Sources
# ─────────────────────────────────────────────────────────────────────────────


class TestSyncSources:
    """Synchronous sequences and iterables are bridged into async pipelines."""
    
    @pytest.mark.asyncio
    async def test_take_over_sync_range(self) -> None:
        assert await aio.to_list(aio.take(sync.range(1, 50), 3)) == [1, 2, 3]
    
    @pytest.mark.asyncio
    async def test_zip_over_sync_ranges(self) -> None:
        pairs = await aio.to_list(aio.zip(sync.range(1, 4), sync.range(4, 100)))
        assert pairs == [(1, 4), (2, 5), (3, 6)]
    
    @pytest.mark.asyncio
    async def test_concat_mixed_sources(self) -> None:
        seq = aio.concat(sync.range(1, 4), [4, 5, 6], RecordingAsyncRange(7, 10))
        assert await aio.to_list(seq) == [1, 2, 3, 4, 5, 6, 7, 8, 9]
    
    @pytest.mark.asyncio
    async def test_finish_closes_sync_source(self) -> None:
        source = RecordingRange(0, 10)
        seq = aio.take(source, 2)
        assert await aio.to_list(seq) == [0, 1]
        assert source.closes == 1
    
    @pytest.mark.asyncio
    async def test_abort_fails_sync_source(self) -> None:
        source = RecordingRange(0, 10)
        seq = aio.map(source, lambda n: 1 // (n - 2))
        with pytest.raises(ZeroDivisionError):
            await aio.to_list(seq)
        assert len(source.failures) == 1
    
    def test_unsupported_source(self) -> None:
        with pytest.raises(TypeError):
            aio.apull(42)  # type: ignore[arg-type]


# ─────────────────────────────────────────────────────────────────────────────
# Terminal Consumers
# ─────────────────────────────────────────────────────────────────────────────


class TestConsumers:
    """Tests for to_list, count and reduce."""
    
    @pytest.mark.asyncio
    async def test_count(self) -> None:
        assert await aio.count(RecordingAsyncRange(0, 5)) == 5
    
    @pytest.mark.asyncio
    async def test_reduce_with_async_reducer(self) -> None:
        async def add(acc: int, n: int) -> int:
            return acc + n
        
        assert await aio.reduce(RecordingAsyncRange(1, 5), add, 0) == 10
    
    @pytest.mark.asyncio
    async def test_rejecting_reducer_aborts_source_first(self) -> None:
        source = RecordingAsyncRange(1, 10)
        
        async def add(acc: int, n: int) -> int:
            if n == 3:
                raise RuntimeError("reducer rejected")
            return acc + n
        
        with pytest.raises(RuntimeError, match="reducer rejected") as info:
            await aio.reduce(source, add, 0)
        assert source.aborts == [info.value]
        assert source.finishes == 0
