"""Error taxonomy surfaced by the search engine."""
from __future__ import annotations

from typing import Any


class SearchError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(SearchError):
    """Raw query input was rejected before any store was touched."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class SearchUnavailableError(SearchError):
    """The spatial store failed; fatal for the call and never retried here."""

    def __init__(self, message: str, query: Any = None, elapsed_ms: float | None = None) -> None:
        super().__init__(message)
        self.query = query
        self.elapsed_ms = elapsed_ms


class SearchTimeoutError(SearchError, TimeoutError):
    """The caller's deadline expired while sub-calls were in flight."""

    def __init__(self, message: str, elapsed_ms: float | None = None) -> None:
        super().__init__(message)
        self.elapsed_ms = elapsed_ms


class CacheError(SearchError):
    """Cache backend failure. Logged by callers and treated as a miss."""
