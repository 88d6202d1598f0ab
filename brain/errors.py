"""Error taxonomy for the Brain request pipeline.

Every error carries the HTTP status it maps to when it happens before the
response stream has opened. After that point only an in-band `error` frame
can report it.
"""

from __future__ import annotations


class BrainError(Exception):
    """Base class for pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = int(status_code)


class QueryValidationError(BrainError):
    """Request rejected before any work (missing query or user id)."""

    status_code = 400


class ContextError(BrainError):
    """Context store unreachable or returned an unusable row."""

    status_code = 500


class AnalysisError(BrainError):
    """LLM call or parse failure. Always recovered by the fallback analyzer."""

    status_code = 500


class DownstreamError(BrainError):
    """Downstream collaborator failed or answered with a non-success status."""

    status_code = 502


class StreamWriteError(BrainError):
    """Failure after the event stream has started."""

    status_code = 500
