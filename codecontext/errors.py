"""Exception hierarchy for indexing and retrieval.

Every error raised on purpose by this package derives from
:class:`CodeContextError`, so callers can catch the whole family at the
indexing or transport boundary.  Range and dimension errors also subclass
``ValueError`` because they describe bad arguments.
"""

from __future__ import annotations

from typing import Optional


class CodeContextError(Exception):
    """Base class for all codecontext errors."""


class ExtractionError(CodeContextError):
    """A syntax tree could not be walked into entities."""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        self.file_path = file_path
        if file_path:
            message = f"{file_path}: {message}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Embedding provider failures
# ---------------------------------------------------------------------------

class EmbeddingProviderError(CodeContextError):
    """The remote embedding provider failed to return vectors."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class AuthenticationError(EmbeddingProviderError):
    """Missing or rejected credentials (HTTP 401 / 403)."""


class RateLimitError(EmbeddingProviderError):
    """The provider throttled the request (HTTP 429)."""


# ---------------------------------------------------------------------------
# Argument errors
# ---------------------------------------------------------------------------

class DimensionMismatchError(CodeContextError, ValueError):
    """A vector does not match the dimensionality of its store."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector dimension {actual} does not match store dimension {expected}"
        )


class LineRangeError(CodeContextError, ValueError):
    """A requested line range lies entirely outside the file."""


class FileNotIndexedError(CodeContextError, LookupError):
    """A snippet was requested for a file that is not part of the index."""
