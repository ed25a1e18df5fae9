"""Entry point for the FastAPI-powered movie discovery service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .config import settings
from .database import CatalogDatabase
from .models import TrackSelection
from .services.discovery import NO_YEAR, DiscoveryService
from .services.downloader import CatalogDownloader
from .services.gemini import GeminiClient
from .services.mirrors import MirrorResolver
from .services.omdb import OMDbClient
from .services.posters import PosterCache, PosterResolver
from .services.state_files import StateFiles

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class OpenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    link: str = Field(min_length=1)
    title: str = ""
    poster: str | None = Field(default=None, alias="posterLink")
    base_name: str | None = Field(default=None, alias="baseName")


class ProgressRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    link: str = Field(min_length=1)
    title: str = ""
    position_ms: int = Field(default=0, ge=0, alias="positionMs")
    duration_ms: int = Field(default=0, ge=0, alias="durationMs")


class TracksRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    link: str = Field(min_length=1)
    title: str = ""
    tracks: TrackSelection = Field(default_factory=TrackSelection)


class RemoveRequest(BaseModel):
    link: str = Field(min_length=1)


class PosterRetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base_name: str = Field(min_length=1, alias="baseName")


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    gemini_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.gemini_api_url).rstrip("/"),
            timeout=httpx.Timeout(30.0, connect=10.0),
        )
    )
    omdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.omdb_api_url),
            timeout=httpx.Timeout(10.0, connect=5.0),
        )
    )
    general_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(20.0, connect=10.0),
            follow_redirects=True,
        )
    )

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    state_files = StateFiles(settings)
    database = CatalogDatabase(settings.catalog_db_path)
    poster_cache = PosterCache(state_files, save_delay=settings.poster_cache_save_delay)
    posters = PosterResolver(
        poster_cache,
        database,
        OMDbClient(settings, omdb_http),
        trusted_hosts=settings.trusted_poster_hosts,
        poster_dir=settings.poster_dir,
        http_client=general_http,
    )
    service = DiscoveryService(
        settings,
        state_files=state_files,
        database=database,
        mirrors=MirrorResolver(
            settings.mirrors, general_http, timeout=settings.mirror_probe_timeout
        ),
        recommender=GeminiClient(settings, gemini_http),
        posters=posters,
        downloader=CatalogDownloader(
            general_http,
            settings.catalog_db_path,
            max_attempts=settings.download_retry_limit,
            retry_delay=settings.download_retry_delay,
        ),
    )

    app.state.discovery_service = service
    await service.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await service.stop()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie search and AI-assisted recommendations across mirror servers",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_discovery_service(app: FastAPI) -> DiscoveryService:
    service = getattr(app.state, "discovery_service", None)
    if not isinstance(service, DiscoveryService):
        raise RuntimeError("Discovery service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    def _service() -> DiscoveryService:
        try:
            return get_discovery_service(fastapi_app)
        except RuntimeError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/state")
    async def state() -> dict[str, Any]:
        return _service().snapshot().to_payload()

    @fastapi_app.get("/api/search")
    async def search(
        q: str = Query(default=""),
        year: str | None = Query(default=None),
    ) -> dict[str, Any]:
        service = _service()
        results = await service.search(q, year or NO_YEAR)
        view = service.snapshot()
        return {
            "status": view.action_status,
            "results": [item.model_dump(by_alias=True) for item in results],
        }

    @fastapi_app.get("/api/recommendations")
    async def recommendations() -> dict[str, Any]:
        service = _service()
        items, stale = service.recommendations()
        if stale:
            service.refresh_recommendations()
        view = service.snapshot()
        return {
            "status": view.recommendation_status,
            "refreshing": view.recommendations_refreshing,
            "stale": stale,
            "items": [item.model_dump(by_alias=True) for item in items],
        }

    @fastapi_app.post("/api/recommendations/refresh")
    async def refresh_recommendations() -> dict[str, Any]:
        service = _service()
        task = service.refresh_recommendations(force=True)
        if task is None:  # pragma: no cover - forced refresh always schedules
            raise HTTPException(status_code=409, detail="Refresh not scheduled")
        result = await task
        return {
            "status": result.status,
            "source": result.source,
            "items": [item.model_dump(by_alias=True) for item in service.snapshot().recommendations],
        }

    @fastapi_app.post("/api/mirrors/refresh")
    async def refresh_mirrors() -> dict[str, Any]:
        service = _service()
        available = await service.refresh_mirrors()
        return {
            "status": service.snapshot().server_status,
            "availableServers": sorted(available),
        }

    @fastapi_app.post("/api/posters/refresh")
    async def refresh_poster(payload: PosterRetryRequest) -> dict[str, Any]:
        poster = await _service().retry_poster(payload.base_name)
        return {"baseName": payload.base_name, "posterLink": poster}

    @fastapi_app.get("/api/history")
    async def history() -> dict[str, Any]:
        view = _service().snapshot()
        return {"items": [row.to_payload() for row in view.history]}

    @fastapi_app.post("/api/history/open")
    async def open_link(payload: OpenRequest) -> dict[str, Any]:
        session = _service().open(
            payload.link,
            payload.title,
            poster=payload.poster,
            base_name=payload.base_name,
        )
        if session is None:
            raise HTTPException(status_code=400, detail="Link is required")
        return {
            "link": session.link,
            "title": session.title,
            "startMs": session.start_ms,
            "tracks": session.tracks.model_dump(by_alias=True),
        }

    @fastapi_app.post("/api/history/progress")
    async def progress(payload: ProgressRequest) -> dict[str, str]:
        _service().update_progress(
            payload.link, payload.title, payload.position_ms, payload.duration_ms
        )
        return {"status": "ok"}

    @fastapi_app.post("/api/history/tracks")
    async def tracks(payload: TracksRequest) -> dict[str, str]:
        _service().update_tracks(payload.link, payload.title, payload.tracks)
        return {"status": "ok"}

    @fastapi_app.post("/api/history/remove")
    async def remove(payload: RemoveRequest) -> dict[str, Any]:
        removed = _service().remove_history(payload.link)
        if not removed:
            raise HTTPException(status_code=404, detail="History entry not found")
        return {"status": "ok"}

    @fastapi_app.post("/api/history/clear")
    async def clear() -> dict[str, str]:
        _service().clear_history()
        return {"status": "ok"}


app = create_app()
