import dataclasses
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from src.collectors.feed_parser import parse_feed
from src.contracts.catalog import (
    AttemptOutcome,
    CacheTokens,
    EpisodeInsert,
    EpisodeUpdate,
    FetchAttempt,
    ReconcilePlan,
    ScheduleUpdate,
    ShowState,
)
from src.errors import ShowNotFound, StoreCancelled, StoreConflict, StoreError
from src.reconcile import reconcile
from src.storage.models import Episode, Show

from conftest import rss_feed, rss_item, two_episode_feed

FEED_URL = "https://example.com/feed.xml"
LATER = datetime.now(timezone.utc) + timedelta(days=1)


def _sync(db_manager, body: bytes, **kwargs):
    snapshot = db_manager.load_snapshot(FEED_URL)
    plan = reconcile(snapshot, parse_feed(body, FEED_URL))
    show_id = snapshot.show.id if snapshot.show else None
    return plan, db_manager.apply(show_id, plan, feed_url=FEED_URL, **kwargs)


def _schedule(outcome=AttemptOutcome.SUCCESS, *, failures=0, state=ShowState.ACTIVE, **kw):
    now = datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)
    return ScheduleUpdate(
        attempt=FetchAttempt(outcome=outcome, attempted_at=now, **kw),
        consecutive_failures=failures,
        next_fetch_at=now + timedelta(hours=1),
        state=state,
    )


def test_apply_creates_show_and_episodes(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())

    assert counts.show_created
    assert counts.inserted == 2
    show = db_manager.get_show(counts.show_id)
    assert show["feed_url"] == FEED_URL
    assert show["title"] == "Science Hour"
    assert show["episode_count"] == 2

    snapshot = db_manager.load_snapshot(FEED_URL)
    assert set(snapshot.episodes) == {"ep-1", "ep-2"}
    assert snapshot.show.content_fingerprint is not None
    assert snapshot.episode("ep-1").fields["published_at"].tzinfo is not None


def test_second_sync_of_same_feed_writes_nothing(db_manager):
    _sync(db_manager, two_episode_feed())

    plan = reconcile(
        db_manager.load_snapshot(FEED_URL), parse_feed(two_episode_feed(), FEED_URL)
    )

    assert plan.is_empty
    assert plan.unchanged == 2


def test_update_touches_only_changed_episode(db_manager):
    _, created = _sync(db_manager, two_episode_feed())
    _, counts = _sync(db_manager, two_episode_feed(second_description="Updated notes"))

    assert counts.updated == 1
    assert counts.inserted == 0
    episodes = {e["guid"]: e for e in db_manager.list_episodes(created.show_id)}
    assert episodes["ep-2"]["description"] == "Updated notes"
    assert episodes["ep-1"]["description"] == "All about stars"


def test_database_enforces_episode_identity(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())

    with pytest.raises(IntegrityError):
        with db_manager.get_session() as session:
            session.add(
                Episode(
                    show_id=counts.show_id,
                    guid="ep-1",
                    enclosure_url="https://cdn.example.com/dup.mp3",
                    content_fingerprint="x" * 64,
                )
            )


def test_database_enforces_show_identity(db_manager):
    _sync(db_manager, two_episode_feed())

    with pytest.raises(IntegrityError):
        with db_manager.get_session() as session:
            session.add(Show(feed_url=FEED_URL, fetch_url=FEED_URL))


def test_concurrent_show_creation_is_a_conflict(db_manager):
    plan = reconcile(
        db_manager.load_snapshot(FEED_URL), parse_feed(two_episode_feed(), FEED_URL)
    )
    db_manager.apply(None, plan, feed_url=FEED_URL)

    with pytest.raises(StoreConflict):
        db_manager.apply(None, plan, feed_url=FEED_URL)
    assert db_manager.count_episodes(db_manager.load_snapshot(FEED_URL).show.id) == 2


def test_stale_fingerprint_rolls_back_whole_plan(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())
    snapshot = db_manager.load_snapshot(FEED_URL)
    ep2 = snapshot.episode("ep-2")
    plan = ReconcilePlan(
        episode_upserts=(
            EpisodeInsert(
                guid="ep-3",
                fields={"title": "Three", "enclosure_url": "https://cdn.example.com/3.mp3"},
                content_fingerprint="3" * 64,
            ),
            EpisodeUpdate(
                guid="ep-2",
                episode_id=ep2.id,
                changed_fields={"title": "Rewritten"},
                content_fingerprint="f" * 64,
                expected_fingerprint="not-what-is-stored",
            ),
        )
    )

    with pytest.raises(StoreConflict) as excinfo:
        db_manager.apply(counts.show_id, plan, feed_url=FEED_URL)

    assert excinfo.value.guid == "ep-2"
    after = db_manager.load_snapshot(FEED_URL)
    assert set(after.episodes) == {"ep-1", "ep-2"}
    assert after.episode("ep-2").fields["title"] == "Episode 2: Black holes"


def test_cancelled_transaction_writes_nothing(db_manager):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(StoreCancelled):
        _sync(db_manager, two_episode_feed(), cancel_event=cancel)

    assert db_manager.load_snapshot(FEED_URL).show is None


def test_expired_deadline_writes_nothing(db_manager):
    with pytest.raises(StoreCancelled):
        _sync(db_manager, two_episode_feed(), deadline=time.monotonic() - 1)

    assert db_manager.list_shows() == []


def test_lease_is_exclusive_until_it_expires(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())
    now = datetime.now(timezone.utc)
    until = now + timedelta(minutes=10)

    assert db_manager.acquire_lease(counts.show_id, "worker-a", until, now)
    assert not db_manager.acquire_lease(counts.show_id, "worker-b", until, now)
    assert db_manager.acquire_lease(
        counts.show_id, "worker-b", until + timedelta(minutes=10), until + timedelta(seconds=1)
    )


def test_leased_shows_are_not_due(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())
    now = datetime.now(timezone.utc)

    assert [s.id for s in db_manager.list_due_shows(LATER, 10)] == [counts.show_id]
    db_manager.acquire_lease(counts.show_id, "worker-a", LATER + timedelta(minutes=5), now)
    assert db_manager.list_due_shows(LATER, 10) == []

    db_manager.release_lease(counts.show_id, "worker-a")
    assert len(db_manager.list_due_shows(LATER, 10)) == 1


def test_record_attempt_persists_schedule_and_tokens(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())
    schedule = ScheduleUpdate(
        attempt=FetchAttempt(
            outcome=AttemptOutcome.SUCCESS,
            attempted_at=datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc),
            status_code=200,
            byte_count=4096,
        ),
        consecutive_failures=0,
        next_fetch_at=datetime(2025, 1, 20, 13, 0, tzinfo=timezone.utc),
        tokens=CacheTokens(etag='"v1"', last_modified="Mon, 20 Jan 2025 11:00:00 GMT"),
        last_fetched_at=datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc),
    )

    db_manager.record_attempt(counts.show_id, schedule)

    due = db_manager.get_due_show(FEED_URL)
    assert due.tokens == CacheTokens(etag='"v1"', last_modified="Mon, 20 Jan 2025 11:00:00 GMT")
    assert due.last_fetched_at == datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)
    show = db_manager.get_show(counts.show_id)
    assert show["next_fetch_at"] == "2025-01-20T13:00:00Z"
    assert show["last_attempt"] == {
        "at": "2025-01-20T12:00:00Z",
        "outcome": "success",
        "status_code": 200,
        "bytes": 4096,
        "error": None,
    }


def test_disable_and_reactivate(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())

    db_manager.record_attempt(
        counts.show_id,
        _schedule(
            AttemptOutcome.PERMANENT_FAILURE,
            failures=11,
            state=ShowState.DISABLED,
            status_code=404,
            error="client_error",
        ),
    )

    show = db_manager.get_show(counts.show_id)
    assert show["state"] == "disabled"
    assert show["disabled_at"] == "2025-01-20T12:00:00Z"
    assert db_manager.list_due_shows(LATER, 10) == []
    assert [s["id"] for s in db_manager.list_shows(state="disabled")] == [counts.show_id]
    assert not db_manager.acquire_lease(
        counts.show_id, "worker-a", LATER, datetime.now(timezone.utc)
    )

    reactivated = db_manager.reactivate_show(FEED_URL, now=datetime.now(timezone.utc))

    assert reactivated["state"] == "active"
    assert reactivated["consecutive_failures"] == 0
    assert reactivated["disabled_at"] is None
    assert len(db_manager.list_due_shows(LATER, 10)) == 1


def test_unknown_shows_raise_not_found(db_manager):
    with pytest.raises(ShowNotFound):
        db_manager.reactivate_show("https://nowhere.example.com/feed")
    with pytest.raises(ShowNotFound):
        db_manager.record_attempt(999, _schedule())
    assert db_manager.get_show(999) is None


def test_episodes_are_listed_newest_first_with_undated_last(db_manager):
    body = rss_feed(
        [
            rss_item("Old", "https://cdn.example.com/old.mp3", guid="old",
                     pub_date="Mon, 06 Jan 2025 10:00:00 GMT"),
            rss_item("Undated", "https://cdn.example.com/u.mp3", guid="undated",
                     pub_date=None),
            rss_item("New", "https://cdn.example.com/new.mp3", guid="new",
                     pub_date="Mon, 13 Jan 2025 10:00:00 GMT"),
        ]
    )
    _, counts = _sync(db_manager, body)

    rows = db_manager.list_episodes(counts.show_id)

    assert [row["guid"] for row in rows] == ["new", "old", "undated"]
    assert rows[0]["published_at"] == "2025-01-13T10:00:00Z"
    assert [r["guid"] for r in db_manager.list_episodes(counts.show_id, limit=1, offset=1)] == [
        "old"
    ]


def test_health_status_counts_rows(db_manager):
    _sync(db_manager, two_episode_feed())

    status = db_manager.get_health_status()

    assert status["total_shows"] == 1
    assert status["total_episodes"] == 2
    assert status["status"] == "healthy"
    assert db_manager.ping()


def test_values_the_database_rejects_become_store_errors(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())
    body = rss_feed(
        [rss_item("Episode 3", "https://cdn.example.com/ep3.mp3", guid="ep-3")]
    )
    plan = reconcile(db_manager.load_snapshot(FEED_URL), parse_feed(body, FEED_URL))
    (insert,) = plan.inserts
    oversized = dataclasses.replace(
        insert, fields={**insert.fields, "enclosure_length": 10**20}
    )
    plan = dataclasses.replace(plan, episode_upserts=(oversized,))

    with pytest.raises(StoreError):
        db_manager.apply(counts.show_id, plan, feed_url=FEED_URL)

    assert set(db_manager.load_snapshot(FEED_URL).episodes) == {"ep-1", "ep-2"}


def test_show_episodes_relationship_loads_rows(db_manager):
    _, counts = _sync(db_manager, two_episode_feed())

    with db_manager.get_session() as session:
        show = session.get(Show, counts.show_id)
        assert sorted(e.guid for e in show.episodes) == ["ep-1", "ep-2"]
