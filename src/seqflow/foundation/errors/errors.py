"""Standardized errors for stream protocol misuse.

Provides error codes and structured error payloads for failures raised by the
stream primitive (lock violations, writes after close, terminated stages).
Uses Pydantic for validation and serialization.

Callback and upstream errors are never wrapped: they surface to the consumer
as the original exception object.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Self

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ErrorCode(StrEnum):
    """Standard error codes for stream protocol failures."""
    STREAM_LOCKED = "STREAM_LOCKED"
    STREAM_CLOSED = "STREAM_CLOSED"
    READER_RELEASED = "READER_RELEASED"
    WRITER_RELEASED = "WRITER_RELEASED"
    TERMINATED = "TERMINATED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


# Codes that mean "the consumer went away", not "something broke"
_SHUTDOWN_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.TERMINATED,
    ErrorCode.CANCELLED,
})


class StreamError(BaseModel):
    """Structured error for a stream operation.
    
    Attributes:
        operation: Operation that failed (e.g. ``get_reader``, ``write``)
        message: Human-readable error message
        code: Machine-readable error code
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
        json_schema_extra={
            "title": "Stream Error",
            "examples": [{
                "operation": "get_reader",
                "message": "stream is already locked to a reader",
                "code": "STREAM_LOCKED",
            }],
        },
    )

    operation: Annotated[str, Field(min_length=1, description="Stream operation that failed")]
    message: Annotated[str, Field(min_length=1, description="Human-readable error message")]
    code: ErrorCode = Field(default=ErrorCode.UNKNOWN, description="Machine-readable error classification")

    @field_validator("message", mode="before")
    @classmethod
    def _ensure_message(cls, v: str | Exception) -> str:
        """Accept Exception objects and extract message."""
        return str(v) if isinstance(v, Exception) else v

    @computed_field
    @property
    def is_shutdown(self) -> bool:
        """Whether this error only reports an orderly shutdown (cancel/terminate)."""
        return self.code in _SHUTDOWN_CODES

    def render(self) -> str:
        return f"[{self.code}] {self.operation}: {self.message}"

    __str__ = render


class StreamException(Exception):
    """Exception wrapping a StreamError for raising."""

    __slots__ = ("error",)

    def __init__(self, error: StreamError) -> None:
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @classmethod
    def create(cls, operation: str, message: str, code: ErrorCode = ErrorCode.UNKNOWN) -> Self:
        """Create stream exception."""
        return cls(StreamError(operation=operation, message=message, code=code))
