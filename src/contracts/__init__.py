"""Shared contracts for the ingestion pipeline."""

from .catalog import (
    AppliedCounts,
    AttemptOutcome,
    CacheTokens,
    CatalogSnapshot,
    DueShow,
    EpisodeInsert,
    EpisodeSnapshot,
    EpisodeUpdate,
    EpisodeUpsert,
    FetchAttempt,
    ReconcilePlan,
    ScheduleUpdate,
    ShowFields,
    ShowSnapshot,
    ShowState,
)
from .feed import (
    EPISODE_CONTENT_FIELDS,
    SHOW_CONTENT_FIELDS,
    EpisodeMeta,
    FeedDocument,
    ShowMeta,
)

__all__ = [
    "AppliedCounts",
    "AttemptOutcome",
    "CacheTokens",
    "CatalogSnapshot",
    "DueShow",
    "EPISODE_CONTENT_FIELDS",
    "EpisodeInsert",
    "EpisodeMeta",
    "EpisodeSnapshot",
    "EpisodeUpdate",
    "EpisodeUpsert",
    "FeedDocument",
    "FetchAttempt",
    "ReconcilePlan",
    "SHOW_CONTENT_FIELDS",
    "ScheduleUpdate",
    "ShowFields",
    "ShowMeta",
    "ShowSnapshot",
    "ShowState",
]
