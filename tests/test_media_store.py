"""Tests for the SQLAlchemy-backed media store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from app.database import Database
from app.exceptions import PersistenceError
from app.models import (
    AddonEvidence,
    AvailabilityVerdict,
    FilterPreferences,
    MediaCreate,
    StreamEvidence,
)
from app.services.media_store import MediaStore


def _evidence(count: int = 2) -> list[AddonEvidence]:
    return [
        AddonEvidence(
            id="torrentio",
            name="Torrentio",
            stream_count=count,
            streams=[StreamEvidence(name="Matrix.1080p", quality="1080P", size="2 GB")],
        )
    ]


async def _open_store(url: str) -> tuple[Database, MediaStore]:
    database = Database(url)
    await database.create_all()
    return database, MediaStore(database.session_factory)


def test_add_media_deduplicates_per_user_and_type(sqlite_url) -> None:
    async def runner() -> None:
        database, store = await _open_store(sqlite_url)
        try:
            user = await store.create_user("alice")
            payload = MediaCreate(type="movie", userId=user.id, tmdbId=603, title="The Matrix")
            first, created = await store.add_media(payload)
            second, created_again = await store.add_media(payload)
            series, series_created = await store.add_media(
                MediaCreate(type="series", userId=user.id, tmdbId=603, title="Other")
            )

            assert created and not created_again
            assert first.id == second.id
            assert series_created and series.id != first.id
            assert first.streams_available is False
            assert first.stream_count == 0
            assert first.last_stream_check is None
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_record_verdict_overwrites_previous_snapshot(sqlite_url) -> None:
    async def runner() -> None:
        database, store = await _open_store(sqlite_url)
        try:
            record, _ = await store.add_media(
                MediaCreate(type="movie", tmdb_id=603, title="The Matrix")
            )
            first_check = datetime(2024, 1, 1, 12, 0, 0)
            available = await store.record_verdict(
                record.id,
                AvailabilityVerdict(
                    available=True,
                    stream_count=2,
                    addons=_evidence(2),
                    last_checked=first_check,
                ),
            )
            assert available.streams_available is True
            assert available.stream_count == 2
            assert available.streams_detail[0]["streamCount"] == 2
            assert available.streams_detail[0]["streams"][0]["quality"] == "1080P"

            later = first_check + timedelta(hours=1)
            gone = await store.record_verdict(
                record.id,
                AvailabilityVerdict(available=False, last_checked=later, reason="No IMDB ID"),
            )
            assert gone.streams_available is False
            assert gone.stream_count == 0
            assert gone.streams_detail == []
            assert gone.last_stream_check == later
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_record_verdict_normalises_inconsistent_verdicts(sqlite_url) -> None:
    """A positive flag without evidence is stored as unavailable."""

    async def runner() -> None:
        database, store = await _open_store(sqlite_url)
        try:
            record, _ = await store.add_media(
                MediaCreate(type="movie", tmdb_id=604, title="Reloaded")
            )
            stored = await store.record_verdict(
                record.id, AvailabilityVerdict(available=True, stream_count=3, addons=[])
            )

            assert stored.streams_available is False
            assert stored.stream_count == 0
            assert stored.streams_detail == []
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_record_verdict_for_missing_item_raises(sqlite_url) -> None:
    async def runner() -> None:
        database, store = await _open_store(sqlite_url)
        try:
            with pytest.raises(PersistenceError):
                await store.record_verdict(999, AvailabilityVerdict.unavailable("No IMDB ID"))
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_user_preferences_round_trip(sqlite_url) -> None:
    async def runner() -> None:
        database, store = await _open_store(sqlite_url)
        try:
            user = await store.create_user("bob", stremio_auth_key="key")
            with pytest.raises(ValueError):
                await store.create_user("bob")

            updated = await store.update_user_filters(
                user.id, FilterPreferences(language_tags=["multi"], min_resolution="1080p")
            )
            assert updated is not None
            assert updated.filter_preferences == FilterPreferences(
                language_tags=["MULTI"], min_resolution="1080p"
            )

            selected = await store.update_user_selected_addons(user.id, ["a", "", "b"])
            assert selected is not None and selected.selected_addons == ["a", "b"]
            cleared = await store.update_user_selected_addons(user.id, [])
            assert cleared is not None and cleared.selected_addons is None

            reset = await store.update_user_filters(user.id, FilterPreferences())
            assert reset is not None and reset.filter_preferences is None
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_filtered_listing_and_latest_available(sqlite_url) -> None:
    async def runner() -> None:
        database, store = await _open_store(sqlite_url)
        try:
            matrix, _ = await store.add_media(
                MediaCreate(type="movie", tmdb_id=603, title="The Matrix")
            )
            await store.add_media(MediaCreate(type="movie", tmdb_id=604, title="Heat"))
            show, _ = await store.add_media(
                MediaCreate(type="series", tmdb_id=1399, title="Game of Thrones")
            )
            await store.record_verdict(
                matrix.id, AvailabilityVerdict(available=True, stream_count=2, addons=_evidence())
            )
            await store.record_verdict(
                show.id, AvailabilityVerdict(available=True, stream_count=2, addons=_evidence())
            )
            await store.mark_watched(matrix.id)

            search = await store.get_filtered(search="matrix")
            assert [record.id for record in search] == [matrix.id]
            watched = await store.get_filtered(content_type="movie", watched=True)
            assert [record.title for record in watched] == ["The Matrix"]
            unavailable = await store.get_by_availability(False)
            assert [record.title for record in unavailable] == ["Heat"]

            latest = await store.get_latest_available(["series"], limit=5)
            assert [record.id for record in latest] == [show.id]
            assert await store.get_latest_available([], limit=5) == []
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_episode_watch_status_and_cascade_delete(sqlite_url) -> None:
    async def runner() -> None:
        database, store = await _open_store(sqlite_url)
        try:
            show, _ = await store.add_media(
                MediaCreate(type="series", tmdb_id=1399, title="Game of Thrones")
            )
            assert await store.add_episodes(show.id, [(1, 1), (1, 2), (1, 1)]) == 2
            assert not (await store.episodes_watched_status(show.id)).all_watched

            for episode in await store.get_episodes(show.id):
                await store.mark_episode_watched(episode.id)
            status = await store.episodes_watched_status(show.id)
            assert status.total == 2 and status.all_watched

            assert await store.delete_media(show.id)
            assert await store.get_by_id(show.id) is None
            assert await store.get_episodes(show.id) == []
            assert not await store.delete_media(show.id)
        finally:
            await database.dispose()

    asyncio.run(runner())
