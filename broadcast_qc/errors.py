"""Exception hierarchy and error kinds for broadcast_qc."""
from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence


class ErrorKind(str, Enum):
    """Failure classification recorded on degraded sections and failed records."""

    INVALID_REQUEST = 'InvalidRequest'
    TOOL_UNAVAILABLE = 'ToolUnavailable'
    TOOL_TIMEOUT = 'ToolTimeout'
    MALFORMED_OUTPUT = 'MalformedOutput'
    TOOL_IO_ERROR = 'ToolIOError'
    ANALYZER_ERROR = 'AnalyzerError'
    CANCELLED = 'Cancelled'


class QCError(Exception):
    """Base exception for all broadcast_qc errors."""

    kind: ErrorKind = ErrorKind.ANALYZER_ERROR


class InvalidRequest(QCError):
    """Raised before dispatch when an analysis request cannot be run."""

    kind = ErrorKind.INVALID_REQUEST


class AnalysisCancelled(QCError):
    """Raised when the parent context was cancelled mid-analysis."""

    kind = ErrorKind.CANCELLED


class ProbeError(QCError):
    """Base exception for failures of the external probe toolkit."""

    def __init__(self, message: str, *, command: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.command = tuple(command) if command else ()


class ToolUnavailable(ProbeError):
    """Raised when ffmpeg/ffprobe is missing or cannot be executed."""

    kind = ErrorKind.TOOL_UNAVAILABLE


class ToolTimeout(ProbeError):
    """Raised when a tool invocation exceeds its deadline."""

    kind = ErrorKind.TOOL_TIMEOUT


class MalformedOutput(ProbeError):
    """Raised when a tool finished but produced nothing usable."""

    kind = ErrorKind.MALFORMED_OUTPUT


class ToolIOError(ProbeError):
    """Raised when spawning a tool keeps failing with transient I/O errors."""

    kind = ErrorKind.TOOL_IO_ERROR
