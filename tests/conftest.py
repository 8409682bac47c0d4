"""Shared fixtures: temporary catalogs, mock feed hosts and log recorders."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from xml.sax.saxutils import escape

import httpx
import pytest

from src.collectors.feed_fetcher import FeedFetcher
from src.collectors.feed_parser import FeedParser
from src.scheduler.context import CrawlContext
from src.storage.database import DatabaseManager
from src.utils.observability import CatalogMetrics

FETCH_CONFIG: Dict[str, Any] = {
    "connect_timeout_seconds": 5.0,
    "read_timeout_seconds": 5.0,
    "total_timeout_seconds": 10.0,
    "max_bytes": 1024 * 1024,
    "max_redirects": 3,
    "user_agent": "podcatalog-tests/1.0",
    "ignore_cache_tokens_after_hours": 168,
}

SCHEDULER_CONFIG: Dict[str, Any] = {
    "max_concurrency": 4,
    "poll_interval_seconds": 3600,
    "base_backoff_seconds": 60,
    "max_backoff_seconds": 3600,
    "jitter_ratio": 0.1,
    "failure_disable_threshold": 3,
    "tick_seconds": 0.05,
    "batch_size": 50,
    "lease_seconds": 600,
    "store_timeout_seconds": 10.0,
    "parse_timeout_seconds": 10.0,
}


# =====================================
# Log recording
# =====================================


@dataclass
class RecordingLogger:
    events: List[Dict[str, Any]]
    module: str

    def _record(self, level: str, payload: Any) -> None:
        self.events.append({"level": level, "module": self.module, "payload": payload})

    def debug(self, payload: Any) -> None:
        self._record("debug", payload)

    def info(self, payload: Any) -> None:
        self._record("info", payload)

    def warning(self, payload: Any) -> None:
        self._record("warning", payload)

    def error(self, payload: Any) -> None:
        self._record("error", payload)


@dataclass
class RecordingLoggerFactory:
    """Stands in for ``CatalogLogger``; keeps every structured payload."""

    events: List[Dict[str, Any]] = field(default_factory=list)

    def create_module_logger(self, module_name: str) -> RecordingLogger:
        return RecordingLogger(self.events, module_name)

    def payloads(self, event: str) -> List[Dict[str, Any]]:
        return [
            entry["payload"]
            for entry in self.events
            if isinstance(entry["payload"], dict) and entry["payload"].get("event") == event
        ]


# =====================================
# Feed documents
# =====================================


def rss_item(
    title: str,
    enclosure: str,
    *,
    guid: Optional[str] = None,
    description: str = "",
    pub_date: Optional[str] = "Mon, 06 Jan 2025 10:00:00 GMT",
    duration: Optional[str] = None,
    length: int = 1000,
) -> str:
    parts = [f"<title>{escape(title)}</title>"]
    if guid is not None:
        parts.append(f'<guid isPermaLink="false">{escape(guid)}</guid>')
    if description:
        parts.append(f"<description>{escape(description)}</description>")
    if pub_date:
        parts.append(f"<pubDate>{pub_date}</pubDate>")
    if duration:
        parts.append(f"<itunes:duration>{duration}</itunes:duration>")
    parts.append(
        f'<enclosure url="{escape(enclosure)}" length="{length}" type="audio/mpeg"/>'
    )
    return "<item>" + "".join(parts) + "</item>"


def rss_feed(
    items: Iterable[str],
    *,
    title: str = "Science Hour",
    description: str = "Weekly science conversations",
    language: str = "en-us",
) -> bytes:
    body = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">'
        "<channel>"
        f"<title>{escape(title)}</title>"
        "<link>https://example.com/show</link>"
        f"<description>{escape(description)}</description>"
        f"<language>{language}</language>"
        "<itunes:author>Example Media</itunes:author>"
        '<itunes:image href="https://example.com/cover.jpg"/>'
        "<itunes:explicit>clean</itunes:explicit>"
        + "".join(items)
        + "</channel></rss>"
    )
    return body.encode("utf-8")


def two_episode_feed(second_description: str = "All about black holes") -> bytes:
    return rss_feed(
        [
            rss_item(
                "Episode 1: Stars",
                "https://cdn.example.com/ep1.mp3",
                guid="ep-1",
                description="All about stars",
                pub_date="Mon, 06 Jan 2025 10:00:00 GMT",
                duration="00:31:05",
            ),
            rss_item(
                "Episode 2: Black holes",
                "https://cdn.example.com/ep2.mp3",
                guid="ep-2",
                description=second_description,
                pub_date="Mon, 13 Jan 2025 10:00:00 GMT",
                duration="45:10",
            ),
        ]
    )


@pytest.fixture()
def feed_builders() -> Dict[str, Callable[..., bytes]]:
    return {"item": rss_item, "feed": rss_feed, "two_episodes": two_episode_feed}


# =====================================
# Mock feed host
# =====================================

Responder = Union[httpx.Response, Callable[[httpx.Request], Any]]


class FeedServer:
    """Routes for ``httpx.MockTransport``; unknown URLs answer 404."""

    def __init__(self) -> None:
        self.routes: Dict[str, Responder] = {}
        self.requests: List[httpx.Request] = []

    def serve(
        self,
        url: str,
        body: bytes = b"",
        *,
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        merged = {"Content-Type": "application/rss+xml"}
        merged.update(headers or {})
        self.routes[url] = lambda request: httpx.Response(
            status, content=body, headers=merged
        )

    def route(self, url: str, responder: Callable[[httpx.Request], Any]) -> None:
        self.routes[url] = responder

    def handler(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        responder = self.routes.get(str(request.url))
        if responder is None:
            return httpx.Response(404, content=b"not found")
        return responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def hits(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)


@pytest.fixture()
def feed_server() -> FeedServer:
    return FeedServer()


@pytest.fixture()
def recording_logger() -> RecordingLoggerFactory:
    return RecordingLoggerFactory()


@pytest.fixture()
def db_manager(tmp_path) -> DatabaseManager:
    manager = DatabaseManager({"type": "sqlite", "path": tmp_path / "catalog.db"})
    yield manager
    manager.dispose()


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def make_context(db_manager, feed_server, recording_logger, clock):
    """Factory for a ``CrawlContext`` wired to the temp catalog and mock host."""

    def _make(**overrides: Any) -> CrawlContext:
        scheduler_config = {**SCHEDULER_CONFIG, **overrides.pop("scheduler", {})}
        fetch_config = {**FETCH_CONFIG, **overrides.pop("fetch", {})}
        params: Dict[str, Any] = {
            "store": db_manager,
            "fetcher": FeedFetcher(
                fetch_config,
                transport=overrides.pop("transport", feed_server.transport),
                logger_factory=recording_logger,
            ),
            "parser": FeedParser(logger_factory=recording_logger),
            "scheduler_config": scheduler_config,
            "fetch_config": fetch_config,
            "metrics": CatalogMetrics(),
            "logger_factory": recording_logger,
            "instance_id": "test-worker",
            "clock": clock,
        }
        params.update(overrides)
        return CrawlContext(**params)

    return _make
