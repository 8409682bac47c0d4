# src/collectors/feed_parser.py
"""Turn raw feed bytes into a canonical :class:`FeedDocument`.

feedparser does the XML work, including its loose fallback for invalid
entities and minor well-formedness problems. The detected format then
selects one of two variants (RSS or Atom) that map feedparser's dicts onto
the canonical show/episode shape; podcast extensions (itunes:duration,
itunes:explicit, itunes:image) are read by helpers shared by both.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import feedparser

from src.contracts.feed import (
    MAX_DURATION_SECONDS,
    MAX_ENCLOSURE_LENGTH,
    EpisodeMeta,
    FeedDocument,
    ShowMeta,
)
from src.errors import FeedParseError, ParseErrorKind
from src.utils.datetime_utils import parse_duration, parse_feed_datetime
from src.utils.fingerprint import fallback_guid
from src.utils.logger import CatalogLogger, StructuredLogger

DEFAULT_MAX_EPISODES = 5_000


# =====================================
# Shared extension helpers
# =====================================


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _parse_explicit(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"yes", "true", "explicit", "1"}:
        return True
    if normalized in {"no", "false", "clean", "0"}:
        return False
    return None


def _parse_length(value: Any) -> Optional[int]:
    try:
        length = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return _within(length, MAX_ENCLOSURE_LENGTH)


def _within(value: Optional[int], limit: int) -> Optional[int]:
    """Out-of-range optional numbers are treated as absent."""
    if value is None or value < 0 or value > limit:
        return None
    return value


def _image_href(container: Mapping[str, Any]) -> Optional[str]:
    image = container.get("image")
    if isinstance(image, Mapping):
        return _optional_text(image.get("href") or image.get("url"))
    return None


def _first_enclosure(entry: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    for enclosure in entry.get("enclosures") or ():
        if _text(enclosure.get("href")):
            return enclosure
    return None


def _entry_published(entry: Mapping[str, Any]):
    for field in ("published_parsed", "updated_parsed", "published", "updated"):
        value = entry.get(field)
        if value:
            parsed = parse_feed_datetime(value)
            if parsed is not None:
                return parsed
    return None


def _entry_description(entry: Mapping[str, Any]) -> str:
    summary = _text(entry.get("summary"))
    if summary:
        return summary
    for content in entry.get("content") or ():
        value = _text(content.get("value"))
        if value:
            return value
    return _text(entry.get("itunes_summary"))


def _episode_fields(entry: Mapping[str, Any], link: Optional[str]) -> Optional[Dict[str, Any]]:
    enclosure = _first_enclosure(entry)
    if enclosure is None:
        return None
    return {
        "title": _text(entry.get("title")),
        "description": _entry_description(entry),
        "published_at": _entry_published(entry),
        "enclosure_url": _text(enclosure.get("href")),
        "enclosure_type": _optional_text(enclosure.get("type")),
        "enclosure_length": _parse_length(enclosure.get("length")),
        "duration_seconds": _within(
            parse_duration(entry.get("itunes_duration")), MAX_DURATION_SECONDS
        ),
        "link_url": link,
        "image_url": _image_href(entry),
        "explicit": _parse_explicit(entry.get("itunes_explicit")),
    }


# =====================================
# Format variants
# =====================================


class FeedVariant(Protocol):
    name: str

    def show_fields(self, feed: Mapping[str, Any]) -> Dict[str, Any]: ...

    def entry_fields(self, entry: Mapping[str, Any]) -> Optional[Dict[str, Any]]: ...


class RssVariant:
    """RSS 0.9x/1.0/2.0, including iTunes and podcast namespace channels."""

    name = "rss"

    def show_fields(self, feed: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "title": _text(feed.get("title")),
            "description": _text(
                feed.get("subtitle") or feed.get("description") or feed.get("summary")
            ),
            "image_url": _image_href(feed),
            "link_url": _optional_text(feed.get("link")),
            "language": _optional_text(feed.get("language")),
            "author": _optional_text(feed.get("author") or feed.get("itunes_author")),
            "explicit": _parse_explicit(feed.get("itunes_explicit")),
        }

    def entry_fields(self, entry: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return _episode_fields(entry, _optional_text(entry.get("link")))


class AtomVariant:
    """Atom 0.3/1.0; enclosures come from ``link rel="enclosure"``."""

    name = "atom"

    def show_fields(self, feed: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "title": _text(feed.get("title")),
            "description": _text(feed.get("subtitle") or feed.get("summary")),
            "image_url": _optional_text(feed.get("logo") or feed.get("icon"))
            or _image_href(feed),
            "link_url": self._alternate_link(feed),
            "language": _optional_text(feed.get("language")),
            "author": _optional_text(feed.get("author")),
            "explicit": _parse_explicit(feed.get("itunes_explicit")),
        }

    def entry_fields(self, entry: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return _episode_fields(entry, self._alternate_link(entry))

    @staticmethod
    def _alternate_link(container: Mapping[str, Any]) -> Optional[str]:
        for link in container.get("links") or ():
            if link.get("rel", "alternate") == "alternate" and _text(link.get("href")):
                return _text(link.get("href"))
        return _optional_text(container.get("link"))


VARIANTS: Dict[str, FeedVariant] = {
    "rss": RssVariant(),
    "atom": AtomVariant(),
}


def sniff_variant(version: str) -> Optional[FeedVariant]:
    """Pick the variant from feedparser's detected ``version`` string."""
    if not version:
        return None
    if version.startswith("atom"):
        return VARIANTS["atom"]
    if version.startswith("rss"):
        return VARIANTS["rss"]
    return None


# =====================================
# Parser
# =====================================


class FeedParser:
    """Parse bodies into :class:`FeedDocument` instances."""

    def __init__(
        self,
        *,
        max_episodes: int = DEFAULT_MAX_EPISODES,
        logger_factory: Optional[CatalogLogger] = None,
    ) -> None:
        self.max_episodes = max_episodes
        self.log = StructuredLogger.for_module("collectors.parser", logger_factory)

    def parse(self, body: bytes, feed_url: str) -> FeedDocument:
        if not body or not body.strip():
            raise FeedParseError(ParseErrorKind.EMPTY, "feed body is empty")

        parsed = feedparser.parse(
            body, response_headers={"content-location": feed_url}
        )
        variant = sniff_variant(parsed.get("version") or "")
        if variant is None:
            reason = parsed.get("bozo_exception")
            raise FeedParseError(
                ParseErrorKind.MALFORMED,
                f"not an RSS or Atom document: {reason or 'unrecognized root element'}",
            )
        if parsed.get("bozo"):
            self.log.emit(
                "info",
                "parser.feed.recovered",
                feed_url=feed_url,
                details={
                    "format": parsed.get("version"),
                    "error": str(parsed.get("bozo_exception")),
                },
            )

        show = ShowMeta(**variant.show_fields(parsed.get("feed") or {}))
        episodes, skipped, duplicates = self._collect_episodes(
            variant, parsed.get("entries") or [], feed_url
        )
        return FeedDocument(
            feed_format=parsed.get("version"),
            show=show,
            episodes=tuple(episodes),
            skipped_entries=skipped,
            duplicate_guids=tuple(duplicates),
        )

    def _collect_episodes(
        self,
        variant: FeedVariant,
        entries: List[Mapping[str, Any]],
        feed_url: str,
    ) -> Tuple[List[EpisodeMeta], int, List[str]]:
        episodes: List[EpisodeMeta] = []
        duplicates: List[str] = []
        seen: set[str] = set()
        skipped = 0

        if len(entries) > self.max_episodes:
            self.log.emit(
                "warning",
                "parser.feed.truncated",
                feed_url=feed_url,
                details={"entries": len(entries), "limit": self.max_episodes},
            )
            skipped += len(entries) - self.max_episodes
            entries = entries[: self.max_episodes]

        for position, entry in enumerate(entries):
            fields = variant.entry_fields(entry)
            if fields is None:
                skipped += 1
                self.log.emit(
                    "debug",
                    "parser.entry.no_enclosure",
                    feed_url=feed_url,
                    details={"position": position, "title": _text(entry.get("title"))},
                )
                continue

            guid = _text(entry.get("id"))
            guid_is_fallback = not guid
            if guid_is_fallback:
                guid = fallback_guid(
                    fields["enclosure_url"], fields["published_at"], fields["title"]
                )

            if guid in seen:
                duplicates.append(guid)
                self.log.emit(
                    "warning",
                    "parser.entry.duplicate_guid",
                    feed_url=feed_url,
                    details={"guid": guid, "position": position},
                )
                continue
            seen.add(guid)
            episodes.append(
                EpisodeMeta(guid=guid, guid_is_fallback=guid_is_fallback, **fields)
            )

        return episodes, skipped, duplicates


def parse_feed(
    body: bytes, feed_url: str, *, max_episodes: int = DEFAULT_MAX_EPISODES
) -> FeedDocument:
    """Convenience wrapper around :class:`FeedParser`."""
    return FeedParser(max_episodes=max_episodes).parse(body, feed_url)


__all__ = [
    "AtomVariant",
    "FeedParser",
    "FeedVariant",
    "RssVariant",
    "VARIANTS",
    "parse_feed",
    "sniff_variant",
]
