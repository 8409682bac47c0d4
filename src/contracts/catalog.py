"""Contracts exchanged between the reconciler, the store and the scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Tuple, Union


class ShowState(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class AttemptOutcome(str, Enum):
    """Outcome recorded for the latest crawl of a show."""

    SUCCESS = "success"
    NOT_MODIFIED = "not_modified"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"
    PARSE_ERROR = "parse_error"
    STORE_ERROR = "store_error"

    @property
    def is_success(self) -> bool:
        return self in (AttemptOutcome.SUCCESS, AttemptOutcome.NOT_MODIFIED)


# =====================================
# Snapshot of persisted state
# =====================================


@dataclass(frozen=True)
class ShowSnapshot:
    id: int
    feed_url: str
    fetch_url: str
    state: ShowState
    content_fingerprint: Optional[str]
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class EpisodeSnapshot:
    id: int
    guid: str
    content_fingerprint: Optional[str]
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class CatalogSnapshot:
    """Everything the reconciler needs to know about one show."""

    show: Optional[ShowSnapshot] = None
    episodes: Mapping[str, EpisodeSnapshot] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "CatalogSnapshot":
        return cls()

    def episode(self, guid: str) -> Optional[EpisodeSnapshot]:
        return self.episodes.get(guid)


# =====================================
# Reconcile plan
# =====================================


@dataclass(frozen=True)
class ShowFields:
    """Show content to write; ``expected_fingerprint`` guards the update."""

    fields: Mapping[str, Any]
    content_fingerprint: str
    expected_fingerprint: Optional[str] = None
    is_new: bool = False


@dataclass(frozen=True)
class EpisodeInsert:
    guid: str
    fields: Mapping[str, Any]
    content_fingerprint: str


@dataclass(frozen=True)
class EpisodeUpdate:
    """Only the changed fields of an existing episode."""

    guid: str
    episode_id: int
    changed_fields: Mapping[str, Any]
    content_fingerprint: str
    expected_fingerprint: Optional[str]


EpisodeUpsert = Union[EpisodeInsert, EpisodeUpdate]


@dataclass(frozen=True)
class ReconcilePlan:
    show_update: Optional[ShowFields] = None
    episode_upserts: Tuple[EpisodeUpsert, ...] = ()
    unchanged: int = 0

    @property
    def inserts(self) -> Tuple[EpisodeInsert, ...]:
        return tuple(op for op in self.episode_upserts if isinstance(op, EpisodeInsert))

    @property
    def updates(self) -> Tuple[EpisodeUpdate, ...]:
        return tuple(op for op in self.episode_upserts if isinstance(op, EpisodeUpdate))

    @property
    def is_empty(self) -> bool:
        return self.show_update is None and not self.episode_upserts

    @property
    def write_count(self) -> int:
        return len(self.episode_upserts) + (1 if self.show_update else 0)


@dataclass(frozen=True)
class AppliedCounts:
    show_id: int
    show_created: bool = False
    show_updated: bool = False
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "show_id": self.show_id,
            "show_created": self.show_created,
            "show_updated": self.show_updated,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
        }


# =====================================
# Scheduling
# =====================================


@dataclass(frozen=True)
class CacheTokens:
    """HTTP validators from the last successful fetch."""

    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.etag and not self.last_modified


@dataclass(frozen=True)
class FetchAttempt:
    outcome: AttemptOutcome
    attempted_at: datetime
    status_code: Optional[int] = None
    byte_count: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class DueShow:
    """Row handed to a crawl worker; ``id`` is None for a feed not yet in the catalog."""

    id: Optional[int]
    feed_url: str
    fetch_url: str
    consecutive_failures: int = 0
    tokens: CacheTokens = field(default_factory=CacheTokens)
    last_fetched_at: Optional[datetime] = None
    poll_interval_seconds: Optional[int] = None

    @classmethod
    def new(cls, feed_url: str, fetch_url: str) -> "DueShow":
        return cls(id=None, feed_url=feed_url, fetch_url=fetch_url)


@dataclass(frozen=True)
class ScheduleUpdate:
    """Scheduler-owned columns written after every attempt."""

    attempt: FetchAttempt
    consecutive_failures: int
    next_fetch_at: datetime
    state: ShowState = ShowState.ACTIVE
    tokens: Optional[CacheTokens] = None
    last_fetched_at: Optional[datetime] = None


__all__ = [
    "AppliedCounts",
    "AttemptOutcome",
    "CacheTokens",
    "CatalogSnapshot",
    "DueShow",
    "EpisodeInsert",
    "EpisodeSnapshot",
    "EpisodeUpdate",
    "EpisodeUpsert",
    "FetchAttempt",
    "ReconcilePlan",
    "ScheduleUpdate",
    "ShowFields",
    "ShowSnapshot",
    "ShowState",
]
