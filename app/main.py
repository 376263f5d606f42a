"""Entry point for the FastAPI-powered Stackr sync service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .models import CollectionItemUpdate
from .services.collection_repository import SqlCollectionRepository
from .services.collection_service import CollectionService
from .services.content_cache import ContentCache
from .services.content_source import ContentSource, build_provider_chains
from .services.events import APP_FOCUS, EventBus, FocusEvent
from .services.kv_store import SqlKeyValueStore
from .services.recommendations import RecommendationEngine
from .services.sessions import SyncSession, SyncSessionManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    provider_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout_seconds, connect=10.0),
            follow_redirects=True,
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    kv_store = SqlKeyValueStore(database.session_factory)
    cache = ContentCache(kv_store, ttl=timedelta(seconds=settings.cache_ttl_seconds))
    content_source = ContentSource(
        cache, build_provider_chains(settings, provider_client)
    )
    repository = SqlCollectionRepository(database.session_factory)
    bus = EventBus()
    sessions = SyncSessionManager(
        repository,
        bus,
        snapshots=kv_store,
        poll_interval=settings.sync_poll_interval_seconds,
    )

    fastapi_app.state.database = database
    fastapi_app.state.event_bus = bus
    fastapi_app.state.content_source = content_source
    fastapi_app.state.collection_service = CollectionService(repository, bus)
    fastapi_app.state.sync_sessions = sessions
    fastapi_app.state.recommendation_engine = RecommendationEngine(
        content_source,
        min_items=settings.recommendation_min_items,
        limit=settings.recommendation_limit,
        pool_size=settings.candidate_pool_size,
    )
    logger.info("%s started (%s)", settings.app_name, settings.environment)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await sessions.close_all()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Collection sync, cached discovery and suggestions for Stackr",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _require_state(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    value = getattr(fastapi_app.state, name, None)
    if not isinstance(value, expected):
        raise RuntimeError(f"{expected.__name__} not initialised")
    return value


def get_session_manager(fastapi_app: FastAPI) -> SyncSessionManager:
    return _require_state(fastapi_app, "sync_sessions", SyncSessionManager)


def get_collection_service(fastapi_app: FastAPI) -> CollectionService:
    return _require_state(fastapi_app, "collection_service", CollectionService)


def get_content_source(fastapi_app: FastAPI) -> ContentSource:
    return _require_state(fastapi_app, "content_source", ContentSource)


def get_recommendation_engine(fastapi_app: FastAPI) -> RecommendationEngine:
    return _require_state(fastapi_app, "recommendation_engine", RecommendationEngine)


def get_event_bus(fastapi_app: FastAPI) -> EventBus:
    return _require_state(fastapi_app, "event_bus", EventBus)


def register_routes(fastapi_app: FastAPI) -> None:
    async def _settle(user_id: str) -> SyncSession | None:
        session = get_session_manager(fastapi_app).get(user_id)
        if session is not None:
            await session.coordinator.wait_idle()
        return session

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/users/{user_id}/collection")
    async def read_collection(user_id: str) -> JSONResponse:
        session = await get_session_manager(fastapi_app).open(user_id)
        return JSONResponse(_collection_payload(session))

    @fastapi_app.post("/users/{user_id}/collection")
    async def add_collection_item(user_id: str, request: Request) -> JSONResponse:
        service = get_collection_service(fastapi_app)
        payload = await _read_json_object(request)

        status = payload.pop("status", None)
        if not isinstance(status, str) or not status.strip():
            raise HTTPException(status_code=400, detail="A collection status is required")
        rating = payload.pop("rating", None)
        if rating is None:
            rating = payload.pop("userRating", None)
        item_payload = payload.get("item")
        if not isinstance(item_payload, dict):
            item_payload = payload

        try:
            item = await service.add_item(user_id, item_payload, status.strip(), rating)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_errors(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        await _settle(user_id)
        return JSONResponse({"item": item.model_dump(mode="json")}, status_code=201)

    @fastapi_app.patch("/users/{user_id}/collection/{item_id}")
    async def update_collection_item(
        user_id: str, item_id: str, request: Request
    ) -> JSONResponse:
        service = get_collection_service(fastapi_app)
        payload = await _read_json_object(request)
        try:
            update = CollectionItemUpdate.model_validate(payload)
            item = await service.update_item(user_id, item_id, update)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_errors(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if item is None:
            raise HTTPException(status_code=404, detail="Collection item not found")

        await _settle(user_id)
        return JSONResponse({"item": item.model_dump(mode="json")})

    @fastapi_app.delete("/users/{user_id}/collection/{item_id}")
    async def remove_collection_item(user_id: str, item_id: str) -> JSONResponse:
        service = get_collection_service(fastapi_app)
        removed = await service.remove_item(user_id, item_id)
        if not removed:
            raise HTTPException(status_code=404, detail="Collection item not found")
        await _settle(user_id)
        return JSONResponse({"removed": item_id})

    @fastapi_app.post("/users/{user_id}/sync")
    async def force_sync(user_id: str) -> JSONResponse:
        session = await get_session_manager(fastapi_app).open(user_id)
        await session.coordinator.refresh()
        return JSONResponse(_collection_payload(session))

    @fastapi_app.post("/users/{user_id}/focus")
    async def focus_regained(user_id: str) -> JSONResponse:
        delivered = get_event_bus(fastapi_app).publish(APP_FOCUS, FocusEvent(user_id))
        session = await _settle(user_id)
        return JSONResponse(
            {
                "delivered": delivered,
                "sync": session.coordinator.to_payload() if session else None,
            }
        )

    @fastapi_app.delete("/users/{user_id}/session")
    async def close_session(user_id: str) -> JSONResponse:
        closed = await get_session_manager(fastapi_app).close(user_id)
        return JSONResponse({"closed": closed})

    @fastapi_app.get("/users/{user_id}/suggestions")
    async def suggestions(user_id: str) -> JSONResponse:
        session = await get_session_manager(fastapi_app).open(user_id)
        engine = get_recommendation_engine(fastapi_app)
        result = await engine.get_suggestions(session.store.current())
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/content/{domain}/trending")
    async def trending(domain: str, limit: int = 20) -> JSONResponse:
        source = get_content_source(fastapi_app)
        try:
            result = await source.trending(domain, max(1, min(limit, 100)))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/content/{domain}/search")
    async def search(domain: str, request: Request, q: str = "") -> JSONResponse:
        source = get_content_source(fastapi_app)
        filters = {
            key: value for key, value in request.query_params.items() if key != "q"
        }
        try:
            result = await source.search(domain, q, filters)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(result.to_payload())

    @fastapi_app.delete("/content/cache")
    async def invalidate_cache(key: str = "") -> JSONResponse:
        if not key.strip():
            raise HTTPException(status_code=400, detail="A cache key is required")
        await get_content_source(fastapi_app).invalidate(key.strip())
        return JSONResponse({"invalidated": key.strip()})


def _collection_payload(session: SyncSession) -> dict[str, Any]:
    collection = session.store.current()
    return {
        "userId": session.user_id,
        "items": [item.model_dump(mode="json") for item in collection],
        "count": len(collection),
        "loaded": session.store.loaded,
        "loading": session.coordinator.in_flight,
        "sync": session.coordinator.to_payload(),
    }


async def _read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def _errors(exc: ValidationError) -> list[dict[str, Any]]:
    return exc.errors(include_url=False, include_context=False)


app = create_app()
