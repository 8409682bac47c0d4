"""Canonical feed document produced by the parser."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Largest values the catalog columns hold: BIGINT lengths, INTEGER durations.
MAX_ENCLOSURE_LENGTH = 2**63 - 1
MAX_DURATION_SECONDS = 2**31 - 1

# Content fields owned by reconciliation. Identity (show URL, episode guid)
# is deliberately absent: it never changes once a row exists.
SHOW_CONTENT_FIELDS: Tuple[str, ...] = (
    "title",
    "description",
    "image_url",
    "link_url",
    "language",
    "author",
    "explicit",
)

EPISODE_CONTENT_FIELDS: Tuple[str, ...] = (
    "title",
    "description",
    "published_at",
    "enclosure_url",
    "enclosure_type",
    "enclosure_length",
    "duration_seconds",
    "link_url",
    "image_url",
    "explicit",
)


class _FeedModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    def content_fields(self) -> Dict[str, Any]:
        raise NotImplementedError


class ShowMeta(_FeedModel):
    """Show-level metadata of one feed snapshot."""

    title: str = ""
    description: str = ""
    image_url: Optional[str] = None
    link_url: Optional[str] = None
    language: Optional[str] = None
    author: Optional[str] = None
    explicit: Optional[bool] = None
    content_fingerprint: Optional[str] = None

    @field_validator("language", mode="before")
    @classmethod
    def _normalize_language(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        normalized = str(value).strip().lower()
        return normalized or None

    def content_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in SHOW_CONTENT_FIELDS}


class EpisodeMeta(_FeedModel):
    """One feed entry with a resolved identifier."""

    guid: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    published_at: Optional[datetime] = None
    enclosure_url: str = Field(min_length=1)
    enclosure_type: Optional[str] = None
    enclosure_length: Optional[int] = Field(default=None, ge=0, le=MAX_ENCLOSURE_LENGTH)
    duration_seconds: Optional[int] = Field(default=None, ge=0, le=MAX_DURATION_SECONDS)
    link_url: Optional[str] = None
    image_url: Optional[str] = None
    explicit: Optional[bool] = None
    guid_is_fallback: bool = False
    content_fingerprint: Optional[str] = None

    @field_validator("published_at", mode="after")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def content_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in EPISODE_CONTENT_FIELDS}


class FeedDocument(_FeedModel):
    """A parsed feed: show metadata plus episodes in feed order."""

    feed_format: str
    show: ShowMeta
    episodes: Tuple[EpisodeMeta, ...] = ()
    skipped_entries: int = 0
    duplicate_guids: Tuple[str, ...] = ()

    @property
    def is_fingerprinted(self) -> bool:
        return self.show.content_fingerprint is not None and all(
            episode.content_fingerprint is not None for episode in self.episodes
        )


__all__ = [
    "EPISODE_CONTENT_FIELDS",
    "MAX_DURATION_SECONDS",
    "MAX_ENCLOSURE_LENGTH",
    "SHOW_CONTENT_FIELDS",
    "EpisodeMeta",
    "FeedDocument",
    "ShowMeta",
]
