"""Explicit dependency bundle handed to every crawl worker."""

from __future__ import annotations

import os
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from src.collectors.feed_fetcher import FeedFetcher
from src.collectors.feed_parser import FeedParser
from src.scheduler.backoff import BackoffPolicy
from src.storage.database import DatabaseManager
from src.utils.logger import CatalogLogger
from src.utils.observability import CatalogMetrics, get_metrics


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass
class CrawlContext:
    """
    Everything a crawl needs: store, fetcher, parser, settings and metrics.

    ``shutdown_event`` is a thread-safe flag checked by store transactions
    running in worker threads; setting it makes them roll back instead of
    committing.
    """

    store: DatabaseManager
    fetcher: FeedFetcher
    parser: FeedParser
    scheduler_config: Dict[str, Any]
    fetch_config: Dict[str, Any]
    metrics: CatalogMetrics = field(default_factory=get_metrics)
    logger_factory: Optional[CatalogLogger] = None
    instance_id: str = field(default_factory=default_instance_id)
    clock: Callable[[], datetime] = _utcnow
    shutdown_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self) -> None:
        self.policy = BackoffPolicy.from_config(self.scheduler_config)

    @classmethod
    def from_settings(
        cls,
        *,
        store: Optional[DatabaseManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[CatalogMetrics] = None,
        logger_factory: Optional[CatalogLogger] = None,
    ) -> "CrawlContext":
        """Build a context from ``config.settings``."""
        from config.settings import (
            CONFIG,
            DATABASE_CONFIG,
            FETCH_CONFIG,
            PARSER_CONFIG,
            SCHEDULER_CONFIG,
        )

        return cls(
            store=store or DatabaseManager(DATABASE_CONFIG),
            fetcher=FeedFetcher(
                FETCH_CONFIG, transport=transport, logger_factory=logger_factory
            ),
            parser=FeedParser(
                max_episodes=PARSER_CONFIG["max_episodes_per_feed"],
                logger_factory=logger_factory,
            ),
            scheduler_config=SCHEDULER_CONFIG,
            fetch_config=FETCH_CONFIG,
            metrics=metrics or get_metrics(),
            logger_factory=logger_factory,
            instance_id=CONFIG.app.instance_id or default_instance_id(),
        )

    async def aclose(self) -> None:
        await self.fetcher.aclose()


__all__ = ["CrawlContext", "default_instance_id"]
