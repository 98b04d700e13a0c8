"""Error handling for seqflow.

- ErrorCode: Standard error codes for stream protocol failures
- StreamError/StreamException: Structured errors and exceptions
"""

from .errors import ErrorCode, StreamError, StreamException

__all__ = ["ErrorCode", "StreamError", "StreamException"]
