"""Timer scheduling for time-windowed stream stages.

Stages that need timers (debounce, throttle) take a ``Scheduler`` instead of
reaching for the event loop directly, so tests can drive time by hand.
The default ``AsyncioScheduler`` arms timers on the running loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol, runtime_checkable

__all__ = ["TimerHandle", "Scheduler", "AsyncioScheduler", "default_scheduler"]


@runtime_checkable
class TimerHandle(Protocol):
    """A pending timer that can be cleared."""
    
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Arms one-shot timers: ``call_later(delay, callback) -> handle``."""
    
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""
    
    __slots__ = ()
    
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


default_scheduler = AsyncioScheduler()
