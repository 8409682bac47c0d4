"""Read-only HTTP API over the show and episode catalog."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Response
from pydantic import BaseModel

from config.version import API_VERSION, PROJECT_VERSION
from src.contracts.catalog import ShowState
from src.storage.database import DatabaseManager, get_database_manager
from src.utils.observability import CONTENT_TYPE_LATEST, CatalogMetrics, get_metrics
from src.utils.text_cleaner import summarize

DEFAULT_API_CONFIG = {"default_page_size": 50, "max_page_size": 200, "summary_length": 280}


class LastAttemptResponse(BaseModel):
    at: Optional[str]
    outcome: Optional[str]
    status_code: Optional[int]
    bytes: Optional[int]
    error: Optional[str]


class ShowResponse(BaseModel):
    id: int
    feed_url: str
    title: str
    description: str
    image_url: Optional[str]
    link_url: Optional[str]
    language: Optional[str]
    author: Optional[str]
    explicit: Optional[bool]
    state: str
    consecutive_failures: int
    last_fetched_at: Optional[str]
    next_fetch_at: Optional[str]
    disabled_at: Optional[str]
    last_attempt: LastAttemptResponse
    episode_count: Optional[int] = None


class EpisodeResponse(BaseModel):
    id: int
    show_id: int
    guid: str
    title: str
    summary: str
    published_at: Optional[str]
    enclosure_url: str
    enclosure_type: Optional[str]
    enclosure_length: Optional[int]
    duration_seconds: Optional[int]
    link_url: Optional[str]
    image_url: Optional[str]
    explicit: Optional[bool]


class PaginationResponse(BaseModel):
    offset: int
    page_size: int
    returned: int
    has_more: bool


class ShowsEnvelope(BaseModel):
    data: List[ShowResponse]
    pagination: PaginationResponse
    filters: Dict[str, Any]
    meta: Dict[str, Any]


class EpisodesEnvelope(BaseModel):
    data: List[EpisodeResponse]
    pagination: PaginationResponse
    meta: Dict[str, Any]


def _meta() -> Dict[str, Any]:
    return {"generated_at": datetime.now(timezone.utc).isoformat()}


def _episode_payload(episode: Dict[str, Any], summary_length: int) -> Dict[str, Any]:
    payload = dict(episode)
    payload["summary"] = summarize(payload.pop("description", ""), summary_length)
    return payload


def create_app(
    database_manager: Optional[DatabaseManager] = None,
    *,
    metrics: Optional[CatalogMetrics] = None,
    api_config: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    """Create the read API; it never writes to the catalog."""

    db_manager = database_manager or get_database_manager()
    catalog_metrics = metrics or get_metrics()
    if api_config is None:
        from config.settings import API_CONFIG

        api_config = API_CONFIG
    settings = {**DEFAULT_API_CONFIG, **api_config}
    default_page_size = settings["default_page_size"]
    max_page_size = settings["max_page_size"]
    summary_length = settings["summary_length"]

    app = FastAPI(title="podcatalog API", version=PROJECT_VERSION)

    def get_db() -> DatabaseManager:
        return db_manager

    @app.get("/healthz")
    def health_probe(manager: DatabaseManager = Depends(get_db)) -> Dict[str, Any]:
        status = manager.get_health_status()
        return {
            "status": "ok" if status.get("status") == "healthy" else "degraded",
            "details": status,
        }

    @app.get("/readyz")
    def readiness_probe(manager: DatabaseManager = Depends(get_db)) -> Dict[str, Any]:
        if not manager.ping():
            raise HTTPException(status_code=503, detail="database unavailable")
        return {"status": "ready"}

    @app.get("/v1/version")
    def version() -> Dict[str, str]:
        return {"version": PROJECT_VERSION, "api_version": API_VERSION}

    @app.get("/metrics")
    def prometheus_metrics() -> Response:
        return Response(content=catalog_metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/v1/shows", response_model=ShowsEnvelope)
    def list_shows(
        state: Optional[ShowState] = Query(None),
        page_size: int = Query(default_page_size, ge=1, le=max_page_size),
        offset: int = Query(0, ge=0),
        manager: DatabaseManager = Depends(get_db),
    ) -> ShowsEnvelope:
        rows = manager.list_shows(
            state=state.value if state else None, limit=page_size + 1, offset=offset
        )
        has_more = len(rows) > page_size
        rows = rows[:page_size]
        return ShowsEnvelope(
            data=[ShowResponse(**row) for row in rows],
            pagination=PaginationResponse(
                offset=offset, page_size=page_size, returned=len(rows), has_more=has_more
            ),
            filters={"state": state.value if state else None},
            meta=_meta(),
        )

    @app.get("/v1/shows/{show_id}", response_model=ShowResponse)
    def get_show(
        show_id: int = Path(..., ge=1),
        manager: DatabaseManager = Depends(get_db),
    ) -> ShowResponse:
        show = manager.get_show(show_id)
        if show is None:
            raise HTTPException(status_code=404, detail="show not found")
        return ShowResponse(**show)

    @app.get("/v1/shows/{show_id}/episodes", response_model=EpisodesEnvelope)
    def list_episodes(
        show_id: int = Path(..., ge=1),
        page_size: int = Query(default_page_size, ge=1, le=max_page_size),
        offset: int = Query(0, ge=0),
        manager: DatabaseManager = Depends(get_db),
    ) -> EpisodesEnvelope:
        if manager.get_show(show_id) is None:
            raise HTTPException(status_code=404, detail="show not found")
        rows = manager.list_episodes(show_id, limit=page_size + 1, offset=offset)
        has_more = len(rows) > page_size
        rows = rows[:page_size]
        return EpisodesEnvelope(
            data=[EpisodeResponse(**_episode_payload(row, summary_length)) for row in rows],
            pagination=PaginationResponse(
                offset=offset, page_size=page_size, returned=len(rows), has_more=has_more
            ),
            meta=_meta(),
        )

    return app


__all__ = ["create_app"]
