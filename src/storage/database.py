# src/storage/database.py
# Catalog store adapter
# =====================

"""
SQLAlchemy-backed catalog store.

:class:`DatabaseManager` is the only code that writes catalog rows. Content
changes arrive as a :class:`ReconcilePlan` and are applied in a single
transaction; scheduling fields arrive as a :class:`ScheduleUpdate` after each
crawl attempt. Uniqueness of ``shows.feed_url`` and ``episodes(show_id,
guid)`` is enforced by the database, and losing a race against another
writer surfaces as :class:`StoreConflict`.

SQLite transactions start with ``BEGIN IMMEDIATE`` so the write lock is
taken up front; PostgreSQL runs at ``SERIALIZABLE``.
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, desc, event, func, or_, text, update
from sqlalchemy.engine import URL
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.contracts.catalog import (
    AppliedCounts,
    CacheTokens,
    CatalogSnapshot,
    DueShow,
    EpisodeInsert,
    EpisodeSnapshot,
    ReconcilePlan,
    ScheduleUpdate,
    ShowSnapshot,
    ShowState,
)
from src.contracts.feed import EPISODE_CONTENT_FIELDS, SHOW_CONTENT_FIELDS
from src.errors import ShowNotFound, StoreCancelled, StoreConflict, StoreError
from src.storage.models import Base, Episode, Show
from src.utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE = "40001"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_serialization_failure(exc: OperationalError) -> bool:
    return getattr(exc.orig, "pgcode", None) == SERIALIZATION_FAILURE


def _fingerprint_matches(column, expected: Optional[str]):
    return column.is_(None) if expected is None else column == expected


class DatabaseManager:
    """
    Owns the engine, the session factory and every catalog query.

    Pass a mapping shaped like ``config.settings.DATABASE_CONFIG``; tests
    point ``path`` at a temporary file.
    """

    def __init__(self, database_config: Optional[Dict[str, Any]] = None):
        if database_config is None:
            from config.settings import DATABASE_CONFIG

            database_config = DATABASE_CONFIG
        self.config = database_config
        self.engine = None
        self.SessionLocal = None
        self._setup_database()

    def _setup_database(self) -> None:
        db_type = self.config["type"]
        try:
            if db_type == "sqlite":
                db_path = Path(self.config["path"])
                db_path.parent.mkdir(parents=True, exist_ok=True)
                self.engine = create_engine(
                    f"sqlite:///{db_path}",
                    echo=False,
                    connect_args={
                        "check_same_thread": False,
                        "timeout": self.config.get("connect_timeout", 20),
                    },
                    pool_pre_ping=True,
                )
                self._install_sqlite_hooks()

            elif db_type == "postgresql":
                database_url = URL.create(
                    "postgresql",
                    username=self.config.get("user"),
                    password=self.config.get("password"),
                    host=self.config.get("host"),
                    port=self.config.get("port"),
                    database=self.config.get("name"),
                )
                self.engine = create_engine(
                    database_url,
                    echo=False,
                    isolation_level="SERIALIZABLE",
                    pool_size=self.config.get("pool_size", 5),
                    max_overflow=self.config.get("max_overflow", 10),
                    pool_recycle=self.config.get("pool_recycle", 1800),
                    pool_pre_ping=True,
                    connect_args={
                        "connect_timeout": self.config.get("connect_timeout", 10)
                    },
                )

            else:
                raise ValueError(f"Unsupported database type: {db_type}")

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=self.engine,
                expire_on_commit=False,
            )
            Base.metadata.create_all(self.engine)
            logger.info("Catalog database ready (%s)", db_type)

        except Exception as exc:
            logger.error("Could not configure catalog database: %s", exc)
            raise

    def _install_sqlite_hooks(self) -> None:
        @event.listens_for(self.engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Hand transaction control to the "begin" hook below.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        @event.listens_for(self.engine, "begin")
        def _on_begin(connection):
            connection.exec_driver_sql("BEGIN IMMEDIATE")

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on any error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.error("Catalog database operation failed: %s", exc)
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.warning("Catalog database ping failed: %s", exc)
            return False

    # =====================================
    # Snapshots
    # =====================================

    def load_snapshot(self, feed_url: str) -> CatalogSnapshot:
        """Current show row and all of its episodes, keyed by GUID."""
        with self.get_session() as session:
            show = session.query(Show).filter_by(feed_url=feed_url).one_or_none()
            if show is None:
                return CatalogSnapshot.empty()

            show_snapshot = ShowSnapshot(
                id=show.id,
                feed_url=show.feed_url,
                fetch_url=show.fetch_url,
                state=ShowState(show.state),
                content_fingerprint=show.content_fingerprint,
                fields={name: getattr(show, name) for name in SHOW_CONTENT_FIELDS},
            )
            episodes = {}
            for row in session.query(Episode).filter_by(show_id=show.id):
                fields = {name: getattr(row, name) for name in EPISODE_CONTENT_FIELDS}
                fields["published_at"] = ensure_utc(fields["published_at"])
                episodes[row.guid] = EpisodeSnapshot(
                    id=row.id,
                    guid=row.guid,
                    content_fingerprint=row.content_fingerprint,
                    fields=fields,
                )
            return CatalogSnapshot(show=show_snapshot, episodes=episodes)

    # =====================================
    # Applying reconcile plans
    # =====================================

    def apply(
        self,
        show_id: Optional[int],
        plan: ReconcilePlan,
        *,
        feed_url: str,
        fetch_url: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> AppliedCounts:
        """
        Apply ``plan`` atomically.

        ``show_id`` is None when the snapshot had no show; the plan must then
        create it. ``deadline`` is a ``time.monotonic()`` value; once it has
        passed, or ``cancel_event`` is set, the transaction is rolled back
        instead of committed.

        Raises:
            StoreConflict: a uniqueness or fingerprint guard was violated.
            StoreCancelled: shutdown or deadline reached before commit.
            StoreError: any other storage fault. Nothing was written.
        """
        session = self.SessionLocal()
        try:
            counts = self._apply_plan(session, show_id, plan, feed_url, fetch_url)
            if cancel_event is not None and cancel_event.is_set():
                raise StoreCancelled("store transaction cancelled by shutdown")
            if deadline is not None and time.monotonic() > deadline:
                raise StoreCancelled("store transaction exceeded its deadline")
            session.commit()
        except StoreError:
            session.rollback()
            raise
        except IntegrityError as exc:
            session.rollback()
            raise StoreConflict(f"uniqueness violated for {feed_url}: {exc.orig}") from exc
        except OperationalError as exc:
            session.rollback()
            if _is_serialization_failure(exc):
                raise StoreConflict(f"serialization failure for {feed_url}") from exc
            raise StoreError(f"store unavailable for {feed_url}: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(f"store transaction failed for {feed_url}: {exc}") from exc
        except Exception as exc:
            # DBAPI value errors such as integer overflow are not wrapped by SQLAlchemy.
            session.rollback()
            raise StoreError(
                f"store rejected plan for {feed_url}: {type(exc).__name__}: {exc}"
            ) from exc
        finally:
            session.close()

        logger.debug(
            "Applied plan for %s: %s", feed_url, counts.as_dict()
        )
        return counts

    def _apply_plan(
        self,
        session: Session,
        show_id: Optional[int],
        plan: ReconcilePlan,
        feed_url: str,
        fetch_url: Optional[str],
    ) -> AppliedCounts:
        show_created = False
        show_updated = False
        show_update = plan.show_update
        now = _utcnow()

        if show_id is None:
            if show_update is None or not show_update.is_new:
                raise StoreConflict(f"no show row for {feed_url}")
            show = Show(
                feed_url=feed_url,
                fetch_url=fetch_url or feed_url,
                content_fingerprint=show_update.content_fingerprint,
                next_fetch_at=now,
                **show_update.fields,
            )
            session.add(show)
            session.flush()
            show_id = show.id
            show_created = True

        elif show_update is not None:
            if show_update.is_new:
                raise StoreConflict(f"show for {feed_url} already exists")
            values = dict(show_update.fields)
            values["content_fingerprint"] = show_update.content_fingerprint
            values["updated_at"] = now
            result = session.execute(
                update(Show)
                .where(
                    Show.id == show_id,
                    _fingerprint_matches(
                        Show.content_fingerprint, show_update.expected_fingerprint
                    ),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StoreConflict(f"show {show_id} changed concurrently")
            show_updated = True

        inserted = 0
        updated = 0
        for op in plan.episode_upserts:
            if isinstance(op, EpisodeInsert):
                session.add(
                    Episode(
                        show_id=show_id,
                        guid=op.guid,
                        content_fingerprint=op.content_fingerprint,
                        **op.fields,
                    )
                )
                inserted += 1
                continue

            values = dict(op.changed_fields)
            values["content_fingerprint"] = op.content_fingerprint
            values["updated_at"] = now
            result = session.execute(
                update(Episode)
                .where(
                    Episode.id == op.episode_id,
                    Episode.show_id == show_id,
                    Episode.guid == op.guid,
                    _fingerprint_matches(
                        Episode.content_fingerprint, op.expected_fingerprint
                    ),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StoreConflict(
                    f"episode {op.guid} of show {show_id} changed concurrently",
                    guid=op.guid,
                )
            updated += 1

        session.flush()
        return AppliedCounts(
            show_id=show_id,
            show_created=show_created,
            show_updated=show_updated,
            inserted=inserted,
            updated=updated,
            unchanged=plan.unchanged,
        )

    # =====================================
    # Scheduling fields
    # =====================================

    def list_due_shows(self, now: datetime, limit: int) -> List[DueShow]:
        """Active shows whose next fetch time has passed and that hold no live lease."""
        with self.get_session() as session:
            rows = (
                session.query(Show)
                .filter(
                    Show.state == ShowState.ACTIVE.value,
                    Show.next_fetch_at <= now,
                    or_(Show.lease_expires_at.is_(None), Show.lease_expires_at < now),
                )
                .order_by(Show.next_fetch_at, Show.id)
                .limit(limit)
                .all()
            )
            return [self._due_show(row) for row in rows]

    def get_due_show(self, feed_url: str) -> Optional[DueShow]:
        with self.get_session() as session:
            row = session.query(Show).filter_by(feed_url=feed_url).one_or_none()
            return self._due_show(row) if row is not None else None

    @staticmethod
    def _due_show(row: Show) -> DueShow:
        return DueShow(
            id=row.id,
            feed_url=row.feed_url,
            fetch_url=row.fetch_url,
            consecutive_failures=row.consecutive_failures or 0,
            tokens=CacheTokens(etag=row.etag, last_modified=row.last_modified),
            last_fetched_at=ensure_utc(row.last_fetched_at),
            poll_interval_seconds=row.poll_interval_seconds,
        )

    def acquire_lease(
        self, show_id: int, owner: str, until: datetime, now: Optional[datetime] = None
    ) -> bool:
        """Claim ``show_id`` for one crawl; False when another worker holds it."""
        now = now or _utcnow()
        with self.get_session() as session:
            result = session.execute(
                update(Show)
                .where(
                    Show.id == show_id,
                    Show.state == ShowState.ACTIVE.value,
                    or_(Show.lease_expires_at.is_(None), Show.lease_expires_at < now),
                )
                .values(lease_owner=owner, lease_expires_at=until)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def release_lease(self, show_id: int, owner: str) -> None:
        with self.get_session() as session:
            session.execute(
                update(Show)
                .where(Show.id == show_id, Show.lease_owner == owner)
                .values(lease_owner=None, lease_expires_at=None)
                .execution_options(synchronize_session=False)
            )

    def record_attempt(self, show_id: int, schedule: ScheduleUpdate) -> None:
        """Persist the outcome of one crawl attempt and the next fetch time."""
        attempt = schedule.attempt
        with self.get_session() as session:
            show = session.get(Show, show_id)
            if show is None:
                raise ShowNotFound(f"show {show_id} does not exist")

            show.last_attempt_at = attempt.attempted_at
            show.last_attempt_outcome = attempt.outcome.value
            show.last_status_code = attempt.status_code
            show.last_attempt_bytes = attempt.byte_count
            show.last_error = attempt.error
            show.consecutive_failures = schedule.consecutive_failures
            show.next_fetch_at = schedule.next_fetch_at
            if schedule.tokens is not None:
                show.etag = schedule.tokens.etag
                show.last_modified = schedule.tokens.last_modified
            if schedule.last_fetched_at is not None:
                show.last_fetched_at = schedule.last_fetched_at

            if schedule.state is ShowState.DISABLED and show.state != ShowState.DISABLED.value:
                show.disabled_at = attempt.attempted_at
                logger.warning(
                    "Show %s disabled after %s consecutive failures",
                    show.feed_url,
                    schedule.consecutive_failures,
                )
            show.state = schedule.state.value
            show.lease_owner = None
            show.lease_expires_at = None

    def reactivate_show(self, feed_url: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Return a disabled show to the active pool with a clean failure count."""
        now = now or _utcnow()
        with self.get_session() as session:
            show = session.query(Show).filter_by(feed_url=feed_url).one_or_none()
            if show is None:
                raise ShowNotFound(f"no show for {feed_url}")
            show.state = ShowState.ACTIVE.value
            show.consecutive_failures = 0
            show.disabled_at = None
            show.next_fetch_at = now
            show.lease_owner = None
            show.lease_expires_at = None
            logger.info("Show %s reactivated", feed_url)
            return show.to_dict()

    # =====================================
    # Read side
    # =====================================

    def list_shows(
        self, state: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Dict[str, Any]]:
        with self.get_session() as session:
            query = session.query(Show)
            if state:
                query = query.filter(Show.state == state)
            rows = query.order_by(Show.id).offset(offset).limit(limit).all()
            return [row.to_dict() for row in rows]

    def get_show(self, show_id: int) -> Optional[Dict[str, Any]]:
        with self.get_session() as session:
            show = session.get(Show, show_id)
            if show is None:
                return None
            data = show.to_dict()
        data["episode_count"] = self.count_episodes(show_id)
        return data

    def list_episodes(
        self, show_id: int, limit: int = 50, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Episodes of ``show_id``, newest first; undated episodes last."""
        with self.get_session() as session:
            rows = (
                session.query(Episode)
                .filter(Episode.show_id == show_id)
                .order_by(
                    Episode.published_at.is_(None),
                    desc(Episode.published_at),
                    desc(Episode.id),
                )
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [row.to_dict() for row in rows]

    def count_episodes(self, show_id: int) -> int:
        with self.get_session() as session:
            return (
                session.query(func.count(Episode.id))
                .filter(Episode.show_id == show_id)
                .scalar()
            )

    def get_health_status(self) -> Dict[str, Any]:
        with self.get_session() as session:
            total_shows = session.query(func.count(Show.id)).scalar()
            disabled_shows = (
                session.query(func.count(Show.id))
                .filter(Show.state == ShowState.DISABLED.value)
                .scalar()
            )
            failing_shows = (
                session.query(func.count(Show.id))
                .filter(
                    Show.state == ShowState.ACTIVE.value,
                    Show.consecutive_failures > 0,
                )
                .scalar()
            )
            total_episodes = session.query(func.count(Episode.id)).scalar()

        return {
            "total_shows": total_shows,
            "active_shows": total_shows - disabled_shows,
            "disabled_shows": disabled_shows,
            "failing_shows": failing_shows,
            "total_episodes": total_episodes,
            "database_type": self.config["type"],
            "status": "healthy" if disabled_shows == 0 and failing_shows == 0 else "warning",
        }


_db_manager: Optional[DatabaseManager] = None


def get_database_manager() -> DatabaseManager:
    """Process-wide :class:`DatabaseManager` built from the project settings."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


__all__ = ["DatabaseManager", "get_database_manager"]
