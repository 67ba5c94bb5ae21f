"""Entry point for the FastAPI-powered availability service."""

from __future__ import annotations
import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .db_models import MediaRecord, User
from .exceptions import AddonListError, AuthError, PersistenceError
from .models import (
    AddonSelection,
    FilterPreferences,
    MediaCreate,
    StremioCredentials,
    UserCreate,
    WatchedUpdate,
)
from .services.availability import AvailabilityService
from .services.id_resolver import ExternalIdResolver
from .services.media_store import MediaStore
from .services.metadata_addon import MetadataAddonClient
from .services.notifications import NotificationDispatcher
from .services.probe import StreamProbe
from .services.stremio import StremioClient
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

ModelT = TypeVar("ModelT", bound=BaseModel)

JELLYFIN_ITEM_TYPES = {"movie": "Movie", "series": "Series"}
DEFAULT_LATEST_LIMIT = 16


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    stremio_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.stremio_api_url).rstrip("/"),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    addon_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.addon_timeout_seconds),
            follow_redirects=True,
        )
    )
    metadata_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    notify_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    )
    tmdb: TMDBClient | None = None
    if settings.tmdb_api_key:
        tmdb_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.tmdb_api_url).rstrip("/"),
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        )
        tmdb = TMDBClient(settings, tmdb_http)

    database = Database(settings.database_url)
    await database.create_all()
    store = MediaStore(database.session_factory)

    metadata_client = (
        MetadataAddonClient(metadata_http, str(settings.cinemeta_url))
        if settings.cinemeta_url is not None
        else None
    )
    resolver = ExternalIdResolver(
        store, tmdb_client=tmdb, metadata_client=metadata_client
    )
    stremio = StremioClient(stremio_http)
    probe = StreamProbe(
        stremio,
        resolver,
        addon_http,
        addon_timeout=settings.addon_timeout_seconds,
        sample_limit=settings.stream_sample_limit,
    )
    notifier = NotificationDispatcher(settings, notify_http)
    availability = AvailabilityService(settings, store, probe, notifier)

    fastapi_app.state.database = database
    fastapi_app.state.media_store = store
    fastapi_app.state.stremio_client = stremio
    fastapi_app.state.tmdb_client = tmdb
    fastapi_app.state.notifier = notifier
    fastapi_app.state.availability_service = availability
    availability.start_background_checker()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await availability.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Stream availability checks for Jellyseerr requests via Stremio addons",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _state(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    value = getattr(fastapi_app.state, name, None)
    if not isinstance(value, expected):
        raise RuntimeError(f"{name} not initialised")
    return value


def get_media_store(fastapi_app: FastAPI) -> MediaStore:
    return _state(fastapi_app, "media_store", MediaStore)


def get_availability_service(fastapi_app: FastAPI) -> AvailabilityService:
    return _state(fastapi_app, "availability_service", AvailabilityService)


def get_stremio_client(fastapi_app: FastAPI) -> StremioClient:
    return _state(fastapi_app, "stremio_client", StremioClient)


def get_notifier(fastapi_app: FastAPI) -> NotificationDispatcher:
    return _state(fastapi_app, "notifier", NotificationDispatcher)


async def _read_model(request: Request, model: type[ModelT]) -> ModelT:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=json.loads(exc.json(include_url=False))
        ) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    async def _require_user(user_id: int) -> User:
        user = await get_media_store(fastapi_app).get_user(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    async def _require_media(media_id: int) -> MediaRecord:
        record = await get_media_store(fastapi_app).get_by_id(media_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Media not found")
        return record

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # Users -----------------------------------------------------------------

    @fastapi_app.post("/api/users")
    async def create_user(request: Request) -> JSONResponse:
        payload = await _read_model(request, UserCreate)
        try:
            user = await get_media_store(fastapi_app).create_user(
                payload.username,
                display_name=payload.display_name,
                is_admin=payload.is_admin,
            )
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return JSONResponse(_user_payload(user), status_code=201)

    @fastapi_app.get("/api/users/{user_id}")
    async def get_user(user_id: int) -> dict[str, Any]:
        return _user_payload(await _require_user(user_id))

    @fastapi_app.put("/api/users/{user_id}/stremio")
    async def set_stremio_credentials(user_id: int, request: Request) -> dict[str, Any]:
        await _require_user(user_id)
        credentials = await _read_model(request, StremioCredentials)
        stremio = get_stremio_client(fastapi_app)

        auth_key = credentials.auth_key
        if auth_key is None:
            login = await stremio.login(credentials.email or "", credentials.password or "")
            if not login.success or not login.auth_key:
                raise HTTPException(
                    status_code=400, detail=login.error or "Stremio login failed"
                )
            auth_key = login.auth_key

        status = await stremio.test_auth_key(auth_key)
        if not status.valid:
            raise HTTPException(
                status_code=400, detail=status.error or "Invalid Stremio auth key"
            )
        await get_media_store(fastapi_app).update_user_stremio_key(user_id, auth_key)
        logger.info("Stored Stremio auth key for user %s", user_id)
        return {
            "valid": True,
            "addonCount": status.addon_count,
            "addons": status.addon_names,
        }

    @fastapi_app.delete("/api/users/{user_id}/stremio")
    async def clear_stremio_credentials(user_id: int) -> dict[str, Any]:
        await _require_user(user_id)
        user = await get_media_store(fastapi_app).update_user_stremio_key(user_id, None)
        return _user_payload(user)

    @fastapi_app.put("/api/users/{user_id}/filters")
    async def set_filters(user_id: int, request: Request) -> dict[str, Any]:
        await _require_user(user_id)
        preferences = await _read_model(request, FilterPreferences)
        user = await get_media_store(fastapi_app).update_user_filters(
            user_id, preferences
        )
        return _user_payload(user)

    @fastapi_app.put("/api/users/{user_id}/addons")
    async def set_addon_selection(user_id: int, request: Request) -> dict[str, Any]:
        await _require_user(user_id)
        selection = await _read_model(request, AddonSelection)
        user = await get_media_store(fastapi_app).update_user_selected_addons(
            user_id, selection.addon_ids
        )
        return _user_payload(user)

    @fastapi_app.get("/api/users/{user_id}/addons")
    async def list_addons(user_id: int) -> dict[str, Any]:
        user = await _require_user(user_id)
        if not user.stremio_auth_key:
            raise HTTPException(status_code=400, detail="No Stremio auth key configured")
        try:
            addons = await get_stremio_client(fastapi_app).list_stream_capable_addons(
                user.stremio_auth_key
            )
        except AuthError as exc:
            raise HTTPException(status_code=401, detail=exc.message) from exc
        except AddonListError as exc:
            raise HTTPException(status_code=502, detail=exc.message) from exc

        selected = set(user.selected_addons or [])
        return {
            "addons": [
                {
                    "id": addon.id,
                    "name": addon.name,
                    "version": addon.version,
                    "types": addon.types,
                    "selected": not selected or addon.id in selected,
                }
                for addon in addons
            ],
            "selectedAddons": user.selected_addons,
        }

    # Media -----------------------------------------------------------------

    @fastapi_app.post("/api/media")
    async def register_media(request: Request) -> JSONResponse:
        payload = await _read_model(request, MediaCreate)
        if payload.user_id is not None:
            await _require_user(payload.user_id)
        store = get_media_store(fastapi_app)
        record, created = await store.add_media(payload)
        if not created:
            return JSONResponse(record.to_payload(), status_code=200)

        get_availability_service(fastapi_app).schedule_check(record, notify=True)
        if record.type == "series":
            await _seed_episodes(fastapi_app, store, record)
        logger.info("Registered %s request: %s", record.type, record.title)
        return JSONResponse(record.to_payload(), status_code=201)

    @fastapi_app.get("/api/media")
    async def list_media(
        user_id: int | None = None,
        type: str | None = None,
        watched: bool | None = None,
        available: bool | None = None,
        search: str | None = None,
    ) -> list[dict[str, Any]]:
        if type is not None and type not in JELLYFIN_ITEM_TYPES:
            raise HTTPException(status_code=400, detail="Unsupported content type")
        records = await get_media_store(fastapi_app).get_filtered(
            user_id=user_id,
            content_type=type,
            watched=watched,
            available=available,
            search=search,
        )
        return [record.to_payload() for record in records]

    @fastapi_app.get("/api/media/{media_id}")
    async def get_media(media_id: int) -> dict[str, Any]:
        return (await _require_media(media_id)).to_payload()

    @fastapi_app.delete("/api/media/{media_id}")
    async def delete_media(media_id: int) -> dict[str, Any]:
        if not await get_media_store(fastapi_app).delete_media(media_id):
            raise HTTPException(status_code=404, detail="Media not found")
        return {"deleted": True, "id": media_id}

    @fastapi_app.post("/api/media/{media_id}/recheck")
    async def recheck_media(media_id: int) -> dict[str, Any]:
        record = await _require_media(media_id)
        service = get_availability_service(fastapi_app)
        try:
            verdict, updated = await service.check_and_record(record)
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=exc.message) from exc
        return {
            "media": updated.to_payload(),
            "verdict": verdict.model_dump(mode="json", by_alias=True),
        }

    @fastapi_app.post("/api/media/{media_id}/watched")
    async def mark_watched(media_id: int, request: Request) -> dict[str, Any]:
        record = await _require_media(media_id)
        update = await _read_model(request, WatchedUpdate)
        store = get_media_store(fastapi_app)

        if update.season is None and update.episode is None:
            updated = await store.mark_watched(media_id, update.watched)
            return updated.to_payload() if updated else record.to_payload()

        if record.type != "series" or update.season is None or update.episode is None:
            raise HTTPException(
                status_code=400,
                detail="Episode updates need a series with season and episode",
            )
        episodes = await store.get_episodes(media_id)
        match = next(
            (
                episode
                for episode in episodes
                if episode.season_number == update.season
                and episode.episode_number == update.episode
            ),
            None,
        )
        if match is None:
            raise HTTPException(status_code=404, detail="Episode not found")
        await store.mark_episode_watched(match.id, update.watched)
        status = await store.episodes_watched_status(media_id)
        return {
            **record.to_payload(),
            "episodesTotal": status.total,
            "episodesWatched": status.watched,
        }

    @fastapi_app.get("/Items/Latest")
    async def latest_items(
        background_tasks: BackgroundTasks,
        IncludeItemTypes: str | None = None,
        Limit: int = DEFAULT_LATEST_LIMIT,
    ) -> list[dict[str, Any]]:
        content_types = _parse_item_types(IncludeItemTypes)
        limit = max(1, min(Limit, 100))
        service = get_availability_service(fastapi_app)
        records = await get_media_store(fastapi_app).get_latest_available(
            content_types, limit=limit
        )

        async def _reverify_stale() -> None:
            service.schedule_reverify(records)

        background_tasks.add_task(_reverify_stale)
        return [_jellyfin_item(record) for record in records]

    # Notifications ---------------------------------------------------------

    @fastapi_app.post("/api/notifications/test")
    async def test_notification() -> dict[str, Any]:
        if not settings.discord_webhooks:
            raise HTTPException(status_code=400, detail="No Discord webhooks configured")
        await get_notifier(fastapi_app).send_test()
        return {"sent": True, "webhooks": len(settings.discord_webhooks)}


async def _seed_episodes(
    fastapi_app: FastAPI, store: MediaStore, record: MediaRecord
) -> None:
    """Store the series' episode list so the watched cleanup can judge it."""

    tmdb = getattr(fastapi_app.state, "tmdb_client", None)
    if not isinstance(tmdb, TMDBClient) or not record.tmdb_id:
        return
    seasons = await tmdb.fetch_seasons(record.tmdb_id)
    try:
        added = await store.add_episodes(
            record.id,
            (
                (season.season_number, number)
                for season in seasons
                for number in range(1, season.episode_count + 1)
            ),
        )
    except PersistenceError as exc:
        logger.warning("Could not store episodes for %s: %s", record.title, exc)
        return
    if added:
        logger.info("Stored %d episodes for %s", added, record.title)


def _parse_item_types(raw: str | None) -> list[str]:
    if not raw:
        return list(JELLYFIN_ITEM_TYPES)
    wanted = {part.strip().lower() for part in raw.split(",") if part.strip()}
    return [content_type for content_type in JELLYFIN_ITEM_TYPES if content_type in wanted]


def _user_payload(user: User | None) -> dict[str, Any]:
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "id": user.id,
        "username": user.username,
        "displayName": user.display_name,
        "isAdmin": user.is_admin,
        "hasStremioKey": bool(user.stremio_auth_key),
        "selectedAddons": user.selected_addons,
        "languageTags": list(user.language_tags or []),
        "minResolution": user.min_resolution,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def _jellyfin_item(record: MediaRecord) -> dict[str, Any]:
    provider_ids: dict[str, str] = {}
    if record.tmdb_id:
        provider_ids["Tmdb"] = str(record.tmdb_id)
    if record.imdb_id:
        provider_ids["Imdb"] = record.imdb_id
    if record.tvdb_id:
        provider_ids["Tvdb"] = str(record.tvdb_id)
    return {
        "Id": str(record.id),
        "Name": record.title,
        "Type": JELLYFIN_ITEM_TYPES.get(record.type, "Movie"),
        "ProductionYear": record.year,
        "Overview": record.overview,
        "ProviderIds": provider_ids,
        "DateCreated": record.added_at.isoformat() if record.added_at else None,
        "UserData": {"Played": record.watched},
    }


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
