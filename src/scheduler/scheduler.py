"""
Crawl scheduler: picks due shows and runs bounded, per-show exclusive crawls.

Global concurrency is an :class:`asyncio.Semaphore`. Per-show exclusion has
two layers: an in-process in-flight set keyed by feed URL, and a lease row
on the show so a second scheduler process skips shows this one is crawling.
A request for a show that is already being crawled is skipped, not queued.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy.exc import SQLAlchemyError

from src.contracts.catalog import DueShow
from src.errors import StoreError
from src.scheduler.context import CrawlContext
from src.scheduler.pipeline import CrawlPipeline, CrawlResult, run_in_store
from src.utils.logger import StructuredLogger, log_timed
from src.utils.url_canonicalizer import normalize_feed_url


class CrawlScheduler:
    def __init__(self, context: CrawlContext) -> None:
        self.context = context
        self.pipeline = CrawlPipeline(context)
        self.max_concurrency: int = context.scheduler_config["max_concurrency"]
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self.log = StructuredLogger.for_module("scheduler.crawl", context.logger_factory)

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    async def crawl(self, show: DueShow) -> Optional[CrawlResult]:
        """
        Crawl ``show`` unless it is already in flight here or leased elsewhere.

        Returns None when the crawl was skipped.
        """
        key = show.feed_url
        if key in self._in_flight:
            self._skip(show, "in_flight")
            return None

        self._in_flight.add(key)
        try:
            async with self._semaphore:
                if show.id is not None and not await self._acquire_lease(show):
                    self._skip(show, "leased")
                    return None
                try:
                    with self.context.metrics.track_in_flight():
                        return await self.pipeline.crawl(show)
                except Exception:
                    if show.id is not None:
                        await run_in_store(
                            self.context,
                            self.context.store.release_lease,
                            show.id,
                            self.context.instance_id,
                        )
                    raise
        finally:
            self._in_flight.discard(key)

    async def _acquire_lease(self, show: DueShow) -> bool:
        now = self.context.clock()
        until = now + timedelta(seconds=self.context.scheduler_config["lease_seconds"])
        return await run_in_store(
            self.context,
            self.context.store.acquire_lease,
            show.id,
            self.context.instance_id,
            until,
            now,
        )

    def _skip(self, show: DueShow, reason: str) -> None:
        self.context.metrics.skipped_crawls.inc()
        self.log.emit(
            "info",
            "crawl.show.skipped",
            feed_url=show.feed_url,
            show_id=show.id,
            details={"reason": reason},
        )

    async def dispatch_due(self) -> List[asyncio.Task]:
        """Start a crawl task for every due show that is not already running."""
        now = self.context.clock()
        with log_timed(self.log, "scheduler.dispatch") as details:
            due: List[DueShow] = await run_in_store(
                self.context,
                self.context.store.list_due_shows,
                now,
                self.context.scheduler_config["batch_size"],
            )
            tasks = []
            for show in due:
                if show.feed_url in self._in_flight:
                    continue
                task = asyncio.create_task(self.crawl(show))
                self._tasks.add(task)
                task.add_done_callback(self._task_done)
                tasks.append(task)
            details.update(due=len(due), dispatched=len(tasks))
        return tasks

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.emit(
                "error",
                "crawl.task.failed",
                details={"error": str(exc), "error_type": type(exc).__name__},
            )

    async def run_once(self) -> Dict[str, Any]:
        """Crawl every show that is due now and wait for all of them."""
        tasks = await self.dispatch_due()
        results = await asyncio.gather(*tasks, return_exceptions=True) if tasks else []
        report = self.build_report(results)
        self.log.emit("info", "crawl.batch.completed", details=report)
        return report

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Dispatch due shows every ``tick_seconds`` until ``stop_event`` is set."""
        tick = self.context.scheduler_config["tick_seconds"]
        self.log.emit(
            "info",
            "scheduler.started",
            details={
                "instance_id": self.context.instance_id,
                "max_concurrency": self.max_concurrency,
                "tick_seconds": tick,
            },
        )
        try:
            while not stop_event.is_set():
                try:
                    await self.dispatch_due()
                except (StoreError, SQLAlchemyError, asyncio.TimeoutError) as exc:
                    self.log.emit(
                        "error",
                        "scheduler.dispatch.failed",
                        details={"error": str(exc) or type(exc).__name__},
                    )
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=tick)
                except asyncio.TimeoutError:
                    continue
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Abort in-flight crawls; pending store transactions roll back."""
        self.context.shutdown_event.set()
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.log.emit("info", "scheduler.stopped", details={"cancelled": len(pending)})

    async def add_feed(self, url: str) -> Optional[CrawlResult]:
        """
        Crawl ``url`` now. A new feed URL becomes a show only when this first
        crawl parses and applies successfully.

        Raises:
            InvalidFeedUrl: ``url`` is not an http(s) URL.
        """
        feed_url = normalize_feed_url(url)
        existing = await run_in_store(
            self.context, self.context.store.get_due_show, feed_url
        )
        show = existing or DueShow.new(feed_url, url.strip())
        return await self.crawl(show)

    @staticmethod
    def build_report(
        results: Iterable[Union[CrawlResult, BaseException, None]],
    ) -> Dict[str, Any]:
        outcomes: Counter = Counter()
        inserted = updated = crawled = skipped = errors = 0
        for result in results:
            if result is None:
                skipped += 1
                continue
            if isinstance(result, BaseException):
                errors += 1
                continue
            crawled += 1
            outcomes[result.outcome.value] += 1
            if result.counts is not None:
                inserted += result.counts.inserted
                updated += result.counts.updated
        return {
            "crawled": crawled,
            "skipped": skipped,
            "errors": errors,
            "outcomes": dict(outcomes),
            "episodes_inserted": inserted,
            "episodes_updated": updated,
        }


__all__ = ["CrawlScheduler"]
