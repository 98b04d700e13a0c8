"""Testing utilities for seqflow.

Provides recording sources that count the termination calls they receive,
and a manual scheduler for deterministic debounce/throttle tests.
"""

from .recording import RecordingAsyncRange, RecordingRange, StreamProbe, recording_stream
from .scheduler import ManualScheduler, ManualTimer

__all__ = [
    "RecordingRange",
    "RecordingAsyncRange",
    "StreamProbe",
    "recording_stream",
    "ManualScheduler",
    "ManualTimer",
]
