"""Prometheus metrics for the crawl pipeline."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

STAGE_LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class CatalogMetrics:
    """Owns a private registry so tests and multiple apps never collide."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.crawls = Counter(
            "podcatalog_crawls_total",
            "Crawl attempts by outcome",
            labelnames=["outcome"],
            registry=self.registry,
        )
        self.episode_writes = Counter(
            "podcatalog_episode_writes_total",
            "Episode rows written by kind",
            labelnames=["kind"],
            registry=self.registry,
        )
        self.show_writes = Counter(
            "podcatalog_show_writes_total",
            "Show rows written by kind",
            labelnames=["kind"],
            registry=self.registry,
        )
        self.store_conflicts = Counter(
            "podcatalog_store_conflicts_total",
            "Optimistic concurrency conflicts raised by the store",
            registry=self.registry,
        )
        self.disabled_shows = Counter(
            "podcatalog_shows_disabled_total",
            "Shows moved to the disabled state",
            registry=self.registry,
        )
        self.skipped_crawls = Counter(
            "podcatalog_crawls_skipped_total",
            "Crawl requests skipped because the show was already in flight",
            registry=self.registry,
        )
        self.stage_latency = Histogram(
            "podcatalog_stage_latency_seconds",
            "Time spent per pipeline stage",
            labelnames=["stage"],
            buckets=STAGE_LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.in_flight = Gauge(
            "podcatalog_in_flight_crawls",
            "Crawls currently executing",
            registry=self.registry,
        )

    def record_attempt(self, outcome: str) -> None:
        self.crawls.labels(outcome=outcome).inc()

    def record_applied(self, counts: Any) -> None:
        """Account for an ``AppliedCounts`` returned by the store."""
        if counts.inserted:
            self.episode_writes.labels(kind="insert").inc(counts.inserted)
        if counts.updated:
            self.episode_writes.labels(kind="update").inc(counts.updated)
        if counts.show_created:
            self.show_writes.labels(kind="insert").inc()
        elif counts.show_updated:
            self.show_writes.labels(kind="update").inc()

    @contextmanager
    def stage_timer(self, stage: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.stage_latency.labels(stage=stage).observe(time.perf_counter() - start)

    @contextmanager
    def track_in_flight(self) -> Iterator[None]:
        self.in_flight.inc()
        try:
            yield
        finally:
            self.in_flight.dec()

    def sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        value = self.registry.get_sample_value(name, labels or {})
        return value or 0.0

    def render(self) -> bytes:
        return generate_latest(self.registry)


_metrics_instance: Optional[CatalogMetrics] = None


def get_metrics() -> CatalogMetrics:
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = CatalogMetrics()
    return _metrics_instance


__all__ = ["CONTENT_TYPE_LATEST", "CatalogMetrics", "get_metrics"]
