"""
One crawl of one show: fetch, parse, fingerprint, reconcile, apply, record.

Every outcome ends as a :class:`FetchAttempt` plus a :class:`ScheduleUpdate`
persisted on the show row, so the per-show state machine
(``Idle -> Fetching -> Reconciling -> Idle | Idle(backoff) | Disabled``)
lives in the database and survives restarts.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from src.collectors.feed_fetcher import FetchFailure, Fresh, NotModified
from src.contracts.catalog import (
    AppliedCounts,
    AttemptOutcome,
    CacheTokens,
    DueShow,
    FetchAttempt,
    ScheduleUpdate,
    ShowState,
)
from src.contracts.feed import FeedDocument
from src.errors import (
    FailureKind,
    FeedParseError,
    ShowNotFound,
    StoreCancelled,
    StoreConflict,
    StoreError,
)
from src.reconcile.reconciler import reconcile
from src.scheduler.context import CrawlContext
from src.utils.fingerprint import tag_document
from src.utils.logger import StructuredLogger

MAX_APPLY_ATTEMPTS = 2


@dataclass(frozen=True)
class CrawlResult:
    feed_url: str
    outcome: AttemptOutcome
    show_id: Optional[int] = None
    counts: Optional[AppliedCounts] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    next_fetch_at: Optional[datetime] = None
    state: ShowState = ShowState.ACTIVE

    def as_dict(self) -> Dict[str, Any]:
        return {
            "feed_url": self.feed_url,
            "show_id": self.show_id,
            "outcome": self.outcome.value,
            "status_code": self.status_code,
            "error": self.error,
            "state": self.state.value,
            "next_fetch_at": self.next_fetch_at.isoformat() if self.next_fetch_at else None,
            "counts": self.counts.as_dict() if self.counts else None,
        }


class _AttemptFailed(Exception):
    def __init__(self, outcome: AttemptOutcome, reason: str) -> None:
        super().__init__(reason)
        self.outcome = outcome
        self.reason = reason


def cache_tokens_for(show: DueShow, now: datetime, max_age_hours: float) -> CacheTokens:
    """Validators to send, or none once the last successful fetch is too old."""
    if show.last_fetched_at is None:
        return CacheTokens()
    if now - show.last_fetched_at > timedelta(hours=max_age_hours):
        return CacheTokens()
    return show.tokens


async def run_in_store(
    context: CrawlContext, func: Callable[..., Any], *args: Any, **kwargs: Any
) -> Any:
    """Run a blocking store call in a worker thread under the store timeout."""
    return await asyncio.wait_for(
        asyncio.to_thread(func, *args, **kwargs),
        timeout=context.scheduler_config["store_timeout_seconds"],
    )


class CrawlPipeline:
    """Runs single-show crawls against a :class:`CrawlContext`."""

    def __init__(self, context: CrawlContext) -> None:
        self.context = context
        self.log = StructuredLogger.for_module("scheduler.pipeline", context.logger_factory)

    async def crawl(self, show: DueShow) -> CrawlResult:
        started = time.perf_counter()
        now = self.context.clock()
        try:
            result = await self._run(show, now)
        except Exception as exc:
            # Any other fault is still recorded as a failed attempt.
            self.log.emit(
                "error",
                "crawl.show.crashed",
                feed_url=show.feed_url,
                show_id=show.id,
                details={"error": str(exc), "error_type": type(exc).__name__},
            )
            result = await self._finish_failure(
                show,
                now,
                AttemptOutcome.TRANSIENT_FAILURE,
                f"unexpected_error: {type(exc).__name__}: {exc}",
            )

        self.log.emit(
            "info" if result.outcome.is_success else "warning",
            "crawl.show.completed",
            feed_url=show.feed_url,
            show_id=result.show_id,
            latency=round(time.perf_counter() - started, 6),
            details={
                "outcome": result.outcome.value,
                "error": result.error,
                "counts": result.counts.as_dict() if result.counts else None,
            },
        )
        return result

    async def _run(self, show: DueShow, now: datetime) -> CrawlResult:
        context = self.context
        tokens = cache_tokens_for(
            show, now, context.fetch_config["ignore_cache_tokens_after_hours"]
        )

        with context.metrics.stage_timer("fetch"):
            fetched = await context.fetcher.fetch(show.fetch_url, tokens)

        if isinstance(fetched, FetchFailure):
            outcome = (
                AttemptOutcome.TRANSIENT_FAILURE
                if fetched.kind is FailureKind.TRANSIENT
                else AttemptOutcome.PERMANENT_FAILURE
            )
            return await self._finish_failure(
                show,
                now,
                outcome,
                fetched.reason,
                status_code=fetched.status_code,
                byte_count=fetched.byte_count,
                retry_after=fetched.retry_after,
            )
        if isinstance(fetched, NotModified):
            return await self._finish_success(
                show,
                now,
                AttemptOutcome.NOT_MODIFIED,
                show_id=show.id,
                tokens=fetched.tokens,
                status_code=fetched.status_code,
            )
        return await self._process_fresh(show, now, fetched)

    async def _process_fresh(
        self, show: DueShow, now: datetime, fetched: Fresh
    ) -> CrawlResult:
        try:
            document = await self._parse(show, fetched.body)
            counts = await self._apply_with_retry(show, document)
        except _AttemptFailed as failure:
            return await self._finish_failure(
                show,
                now,
                failure.outcome,
                failure.reason,
                status_code=fetched.status_code,
                byte_count=fetched.byte_count,
            )

        self.context.metrics.record_applied(counts)
        return await self._finish_success(
            show,
            now,
            AttemptOutcome.SUCCESS,
            show_id=counts.show_id,
            tokens=fetched.tokens,
            status_code=fetched.status_code,
            byte_count=fetched.byte_count,
            counts=counts,
        )

    async def _parse(self, show: DueShow, body: bytes) -> FeedDocument:
        timeout = self.context.scheduler_config["parse_timeout_seconds"]
        try:
            with self.context.metrics.stage_timer("parse"):
                document = await asyncio.wait_for(
                    asyncio.to_thread(self.context.parser.parse, body, show.feed_url),
                    timeout=timeout,
                )
        except FeedParseError as exc:
            raise _AttemptFailed(
                AttemptOutcome.PARSE_ERROR, f"{exc.kind.value}: {exc}"
            ) from exc
        except asyncio.TimeoutError as exc:
            raise _AttemptFailed(
                AttemptOutcome.TRANSIENT_FAILURE, "parse_timeout"
            ) from exc
        return tag_document(document)

    async def _apply_with_retry(
        self, show: DueShow, document: FeedDocument
    ) -> AppliedCounts:
        """
        Reconcile against a fresh snapshot and apply; on a store conflict
        re-read and try once more, then give up as a transient failure.
        """
        context = self.context
        for attempt in range(1, MAX_APPLY_ATTEMPTS + 1):
            try:
                with context.metrics.stage_timer("reconcile"):
                    snapshot = await run_in_store(
                        context, context.store.load_snapshot, show.feed_url
                    )
                    plan = reconcile(snapshot, document)
                show_id = snapshot.show.id if snapshot.show else show.id
                if plan.is_empty:
                    return AppliedCounts(show_id=show_id, unchanged=plan.unchanged)

                deadline = time.monotonic() + context.scheduler_config["store_timeout_seconds"]
                with context.metrics.stage_timer("store"):
                    return await run_in_store(
                        context,
                        context.store.apply,
                        snapshot.show.id if snapshot.show else None,
                        plan,
                        feed_url=show.feed_url,
                        fetch_url=show.fetch_url,
                        cancel_event=context.shutdown_event,
                        deadline=deadline,
                    )
            except StoreConflict as exc:
                context.metrics.store_conflicts.inc()
                self.log.emit(
                    "warning",
                    "crawl.store.conflict",
                    feed_url=show.feed_url,
                    show_id=show.id,
                    details={"attempt": attempt, "guid": exc.guid, "error": str(exc)},
                )
                if attempt == MAX_APPLY_ATTEMPTS:
                    raise _AttemptFailed(
                        AttemptOutcome.TRANSIENT_FAILURE, "store_conflict"
                    ) from exc
            except StoreCancelled as exc:
                raise _AttemptFailed(
                    AttemptOutcome.TRANSIENT_FAILURE, f"store_cancelled: {exc}"
                ) from exc
            except asyncio.TimeoutError as exc:
                raise _AttemptFailed(
                    AttemptOutcome.TRANSIENT_FAILURE, "store_timeout"
                ) from exc
            except (StoreError, SQLAlchemyError) as exc:
                raise _AttemptFailed(AttemptOutcome.STORE_ERROR, str(exc)) from exc
        raise AssertionError("unreachable")

    async def _finish_success(
        self,
        show: DueShow,
        now: datetime,
        outcome: AttemptOutcome,
        *,
        show_id: Optional[int],
        tokens: CacheTokens,
        status_code: Optional[int],
        byte_count: Optional[int] = None,
        counts: Optional[AppliedCounts] = None,
    ) -> CrawlResult:
        policy = self.context.policy
        next_fetch_at = now + timedelta(
            seconds=policy.poll_delay(show.feed_url, show.poll_interval_seconds)
        )
        schedule = ScheduleUpdate(
            attempt=FetchAttempt(
                outcome=outcome,
                attempted_at=now,
                status_code=status_code,
                byte_count=byte_count,
            ),
            consecutive_failures=0,
            next_fetch_at=next_fetch_at,
            state=ShowState.ACTIVE,
            tokens=tokens,
            last_fetched_at=now,
        )
        await self._record(show_id, show.feed_url, schedule)
        return CrawlResult(
            feed_url=show.feed_url,
            outcome=outcome,
            show_id=show_id,
            counts=counts,
            status_code=status_code,
            next_fetch_at=next_fetch_at,
        )

    async def _finish_failure(
        self,
        show: DueShow,
        now: datetime,
        outcome: AttemptOutcome,
        reason: str,
        *,
        status_code: Optional[int] = None,
        byte_count: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> CrawlResult:
        policy = self.context.policy
        failures = show.consecutive_failures + 1
        next_fetch_at = now + timedelta(
            seconds=policy.retry_delay(failures, show.feed_url, retry_after)
        )
        state = ShowState.DISABLED if policy.should_disable(failures) else ShowState.ACTIVE
        schedule = ScheduleUpdate(
            attempt=FetchAttempt(
                outcome=outcome,
                attempted_at=now,
                status_code=status_code,
                byte_count=byte_count,
                error=reason,
            ),
            consecutive_failures=failures,
            next_fetch_at=next_fetch_at,
            state=state,
        )
        await self._record(show.id, show.feed_url, schedule)
        if show.id is not None and state is ShowState.DISABLED:
            self.context.metrics.disabled_shows.inc()
        return CrawlResult(
            feed_url=show.feed_url,
            outcome=outcome,
            show_id=show.id,
            error=reason,
            status_code=status_code,
            next_fetch_at=next_fetch_at,
            state=state,
        )

    async def _record(
        self, show_id: Optional[int], feed_url: str, schedule: ScheduleUpdate
    ) -> None:
        self.context.metrics.record_attempt(schedule.attempt.outcome.value)
        if show_id is None:
            return
        try:
            await run_in_store(self.context, self.context.store.record_attempt, show_id, schedule)
        except (
            ShowNotFound,
            StoreError,
            SQLAlchemyError,
            asyncio.TimeoutError,
        ) as exc:
            # The lease expires on its own; the show is retried once it does.
            self.log.emit(
                "error",
                "crawl.schedule.record_failed",
                feed_url=feed_url,
                show_id=show_id,
                details={"error": str(exc) or type(exc).__name__},
            )


async def crawl_show(context: CrawlContext, show: DueShow) -> CrawlResult:
    return await CrawlPipeline(context).crawl(show)


__all__ = ["CrawlPipeline", "CrawlResult", "cache_tokens_for", "crawl_show", "run_in_store"]
