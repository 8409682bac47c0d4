# src/storage/models.py
# Catalog tables
# ==============

"""
Relational schema for shows and episodes.

The storage engine enforces the catalog identities itself: one row per
normalized feed URL and one episode per ``(show_id, guid)``. Content columns
are written only by the reconciliation path; the scheduling block on
``shows`` is written only by the crawl scheduler.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from src.utils.datetime_utils import isoformat_utc

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Show(Base):
    """A podcast, identified by its normalized feed URL."""

    __tablename__ = "shows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feed_url = Column(String(2048), nullable=False, unique=True)
    # Where requests actually go; may differ from feed_url after redirects.
    fetch_url = Column(String(2048), nullable=False)

    # Feed-derived content
    # ====================
    title = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    image_url = Column(String(2048))
    link_url = Column(String(2048))
    language = Column(String(35))
    author = Column(String(500))
    explicit = Column(Boolean)
    content_fingerprint = Column(String(64))

    # Scheduling and backoff
    # ======================
    state = Column(String(16), nullable=False, default="active")
    consecutive_failures = Column(Integer, nullable=False, default=0)
    next_fetch_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_fetched_at = Column(DateTime(timezone=True))
    etag = Column(String(512))
    last_modified = Column(String(128))
    disabled_at = Column(DateTime(timezone=True))
    poll_interval_seconds = Column(Integer)

    last_attempt_at = Column(DateTime(timezone=True))
    last_attempt_outcome = Column(String(32))
    last_status_code = Column(Integer)
    last_attempt_bytes = Column(BigInteger)
    last_error = Column(Text)

    lease_owner = Column(String(128))
    lease_expires_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    episodes = relationship("Episode", back_populates="show", lazy="select")

    __table_args__ = (Index("idx_shows_state_next_fetch", "state", "next_fetch_at"),)

    def __repr__(self):
        return f"<Show(id={self.id}, feed_url='{self.feed_url}', state='{self.state}')>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feed_url": self.feed_url,
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url,
            "link_url": self.link_url,
            "language": self.language,
            "author": self.author,
            "explicit": self.explicit,
            "state": self.state,
            "consecutive_failures": self.consecutive_failures,
            "last_fetched_at": isoformat_utc(self.last_fetched_at) or None,
            "next_fetch_at": isoformat_utc(self.next_fetch_at) or None,
            "disabled_at": isoformat_utc(self.disabled_at) or None,
            "last_attempt": {
                "at": isoformat_utc(self.last_attempt_at) or None,
                "outcome": self.last_attempt_outcome,
                "status_code": self.last_status_code,
                "bytes": self.last_attempt_bytes,
                "error": self.last_error,
            },
        }


class Episode(Base):
    """One feed entry; ``(show_id, guid)`` never changes once written."""

    __tablename__ = "episodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    show_id = Column(Integer, ForeignKey("shows.id"), nullable=False)
    guid = Column(String(1024), nullable=False)

    title = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    published_at = Column(DateTime(timezone=True))
    enclosure_url = Column(String(2048), nullable=False)
    enclosure_type = Column(String(128))
    enclosure_length = Column(BigInteger)
    duration_seconds = Column(Integer)
    link_url = Column(String(2048))
    image_url = Column(String(2048))
    explicit = Column(Boolean)
    content_fingerprint = Column(String(64), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    show = relationship("Show", back_populates="episodes")

    __table_args__ = (
        UniqueConstraint("show_id", "guid", name="uq_episodes_show_guid"),
        Index("idx_episodes_show_published", "show_id", "published_at"),
    )

    def __repr__(self):
        return f"<Episode(id={self.id}, show_id={self.show_id}, guid='{self.guid}')>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "show_id": self.show_id,
            "guid": self.guid,
            "title": self.title,
            "description": self.description,
            "published_at": isoformat_utc(self.published_at) or None,
            "enclosure_url": self.enclosure_url,
            "enclosure_type": self.enclosure_type,
            "enclosure_length": self.enclosure_length,
            "duration_seconds": self.duration_seconds,
            "link_url": self.link_url,
            "image_url": self.image_url,
            "explicit": self.explicit,
        }


__all__ = ["Base", "Episode", "Show"]
