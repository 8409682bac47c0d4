"""Exception hierarchy shared by the catalog engine."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """How the scheduler should treat a failed crawl."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ParseErrorKind(str, Enum):
    EMPTY = "empty"
    MALFORMED = "malformed"


class CatalogError(Exception):
    """Base class for every error raised by the engine."""


class FeedParseError(CatalogError):
    """Raised when a body cannot be turned into a feed document."""

    def __init__(self, kind: ParseErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class StoreError(CatalogError):
    """A transaction or storage fault; the plan was rolled back."""


class StoreConflict(StoreError):
    """A uniqueness or optimistic-concurrency race lost against another writer."""

    def __init__(self, message: str, *, guid: Optional[str] = None) -> None:
        super().__init__(message)
        self.guid = guid


class StoreCancelled(StoreError):
    """The transaction was rolled back on shutdown or after its deadline."""


class ShowNotFound(CatalogError):
    """No show exists for the requested feed URL or id."""


__all__ = [
    "CatalogError",
    "FailureKind",
    "FeedParseError",
    "ParseErrorKind",
    "ShowNotFound",
    "StoreCancelled",
    "StoreConflict",
    "StoreError",
]
