"""Tests for iterate_stream: streams consumed as async pull sequences."""

from __future__ import annotations

import pytest

from seqflow import DONE, Done, ErrorCode, StreamException, Value, aio, iterate_stream
from seqflow.foundation.testing import recording_stream


class TestIterateStream:
    """Lock handling and cancellation of the adapter."""
    
    @pytest.mark.asyncio
    async def test_natural_close_releases_without_cancel(self) -> None:
        stream, probe = recording_stream(0, 3)
        seq = iterate_stream(stream)
        assert stream.locked
        
        assert await aio.to_list(seq) == [0, 1, 2]
        assert not stream.locked
        assert probe.cancel_count == 0
        assert await seq.advance() is DONE
    
    @pytest.mark.asyncio
    async def test_finish_cancels_and_releases(self) -> None:
        stream, probe = recording_stream(0, 10)
        seq = iterate_stream(stream)
        assert await seq.advance() == Value(0)
        
        assert await seq.finish("enough") == Done("enough")
        assert probe.cancel_reasons == [None]
        assert not stream.locked
    
    @pytest.mark.asyncio
    async def test_prevent_cancel_only_releases(self) -> None:
        """The stream stays usable by the next consumer."""
        stream, probe = recording_stream(0, 5)
        seq = iterate_stream(stream, prevent_cancel=True)
        assert await seq.advance() == Value(0)
        
        await seq.finish()
        assert probe.cancel_count == 0
        assert not stream.locked
        assert await aio.to_list(stream) == [1, 2, 3, 4]
    
    @pytest.mark.asyncio
    async def test_abort_cancels_with_error_as_reason(self) -> None:
        stream, probe = recording_stream(0, 10)
        seq = iterate_stream(stream)
        await seq.advance()
        error = RuntimeError("consumer failed")
        
        with pytest.raises(RuntimeError) as info:
            await seq.abort(error)
        assert info.value is error
        assert probe.cancel_reasons == [error]
        assert not stream.locked
    
    @pytest.mark.asyncio
    async def test_abort_with_prevent_cancel(self) -> None:
        stream, probe = recording_stream(0, 10)
        seq = iterate_stream(stream, prevent_cancel=True)
        await seq.advance()
        
        with pytest.raises(KeyError):
            await seq.abort(KeyError("k"))
        assert probe.cancel_count == 0
        assert not stream.locked
    
    @pytest.mark.asyncio
    async def test_read_error_releases_lock(self) -> None:
        stream, probe = recording_stream(0, 10, fail_at=2)
        with pytest.raises(RuntimeError, match="failed at 2"):
            await aio.to_list(iterate_stream(stream))
        assert not stream.locked
        assert probe.cancel_count == 0
    
    @pytest.mark.asyncio
    async def test_stream_can_only_be_iterated_once_at_a_time(self) -> None:
        stream, _ = recording_stream(0, 3)
        iterate_stream(stream)
        with pytest.raises(StreamException) as info:
            iterate_stream(stream)
        assert info.value.code == ErrorCode.STREAM_LOCKED
    
    @pytest.mark.asyncio
    async def test_async_for_over_stream(self) -> None:
        stream, _ = recording_stream(3, 6)
        assert [n async for n in stream] == [3, 4, 5]
        assert not stream.locked
    
    @pytest.mark.asyncio
    async def test_take_over_stream_cancels_it(self) -> None:
        stream, probe = recording_stream(1, 50)
        assert await aio.to_list(aio.take(stream, 3)) == [1, 2, 3]
        assert probe.cancel_count == 1
        assert not stream.locked
    
    @pytest.mark.asyncio
    async def test_lazy_until_first_read(self) -> None:
        stream, probe = recording_stream(0, 10)
        seq = iterate_stream(stream)
        assert probe.pulls == 0
        await seq.advance()
        assert probe.pulls >= 1
        await seq.finish()
