"""Persistent store for users, media requests and their availability verdicts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Episode, MediaRecord, User
from ..exceptions import PersistenceError
from ..models import AvailabilityVerdict, FilterPreferences, MediaCreate
from ..utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EpisodeWatchStatus:
    total: int
    watched: int

    @property
    def all_watched(self) -> bool:
        return self.total > 0 and self.watched == self.total


class MediaStore:
    """Async repository over the SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Users -----------------------------------------------------------------

    async def create_user(
        self,
        username: str,
        *,
        display_name: str | None = None,
        is_admin: bool = False,
        stremio_auth_key: str | None = None,
    ) -> User:
        user = User(
            username=username,
            display_name=display_name,
            is_admin=is_admin,
            stremio_auth_key=stremio_auth_key,
            language_tags=[],
        )
        async with self._session_factory() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ValueError(f"User {username} already exists") from exc
            await session.refresh(user)
        return user

    async def get_user(self, user_id: int) -> User | None:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def update_user_stremio_key(self, user_id: int, auth_key: str | None) -> User | None:
        return await self._update_user(user_id, stremio_auth_key=auth_key)

    async def update_user_filters(
        self, user_id: int, preferences: FilterPreferences
    ) -> User | None:
        return await self._update_user(
            user_id,
            language_tags=list(preferences.language_tags),
            min_resolution=preferences.min_resolution,
        )

    async def update_user_selected_addons(
        self, user_id: int, addon_ids: Sequence[str] | None
    ) -> User | None:
        selection = [addon_id for addon_id in addon_ids or [] if addon_id]
        return await self._update_user(user_id, selected_addons=selection or None)

    async def _update_user(self, user_id: int, **values: Any) -> User | None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            for key, value in values.items():
                setattr(user, key, value)
            await session.commit()
            await session.refresh(user)
            return user

    # Media -----------------------------------------------------------------

    async def add_media(self, payload: MediaCreate) -> tuple[MediaRecord, bool]:
        """Register a request, returning the record and whether it was created."""

        async with self._session_factory() as session:
            if payload.tmdb_id is not None:
                stmt = select(MediaRecord).where(
                    MediaRecord.type == payload.type,
                    MediaRecord.tmdb_id == payload.tmdb_id,
                    or_(
                        MediaRecord.user_id == payload.user_id,
                        MediaRecord.user_id.is_(None),
                    ),
                )
                existing = (await session.execute(stmt)).scalars().first()
                if existing is not None:
                    return existing, False

            record = MediaRecord(
                **payload.model_dump(),
                status="requested",
                streams_available=False,
                stream_count=0,
                streams_detail=[],
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record, True

    async def get_by_id(self, media_id: int) -> MediaRecord | None:
        async with self._session_factory() as session:
            return await session.get(MediaRecord, media_id)

    async def get_by_availability(self, available: bool) -> list[MediaRecord]:
        return await self._select(MediaRecord.streams_available == available)

    async def get_by_type(self, content_type: str) -> list[MediaRecord]:
        return await self._select(MediaRecord.type == content_type)

    async def get_watched_by_type(self, content_type: str) -> list[MediaRecord]:
        return await self._select(
            MediaRecord.type == content_type, MediaRecord.watched.is_(True)
        )

    async def get_filtered(
        self,
        *,
        user_id: int | None = None,
        content_type: str | None = None,
        watched: bool | None = None,
        available: bool | None = None,
        search: str | None = None,
    ) -> list[MediaRecord]:
        conditions: list[Any] = []
        if user_id is not None:
            conditions.append(MediaRecord.user_id == user_id)
        if content_type:
            conditions.append(MediaRecord.type == content_type)
        if watched is not None:
            conditions.append(MediaRecord.watched == watched)
        if available is not None:
            conditions.append(MediaRecord.streams_available == available)
        if search:
            term = f"%{search}%"
            conditions.append(
                or_(MediaRecord.title.ilike(term), MediaRecord.original_title.ilike(term))
            )
        return await self._select(*conditions)

    async def get_latest_available(
        self, content_types: Iterable[str], *, limit: int
    ) -> list[MediaRecord]:
        """Return the most recently added available items of the given kinds."""

        types = list(content_types)
        if not types:
            return []
        async with self._session_factory() as session:
            stmt = (
                select(MediaRecord)
                .where(
                    MediaRecord.streams_available.is_(True),
                    MediaRecord.type.in_(types),
                )
                .order_by(MediaRecord.added_at.desc(), MediaRecord.id.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def set_imdb_id(self, media_id: int, imdb_id: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(MediaRecord)
                    .where(MediaRecord.id == media_id)
                    .values(imdb_id=imdb_id)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to store IMDB ID for media {media_id}: {exc}"
            ) from exc

    async def update_stream_status(
        self,
        media_id: int,
        available: bool,
        stream_count: int,
        checked_at: datetime,
        detail: list[dict[str, Any]] | None,
    ) -> MediaRecord:
        """Overwrite the four availability fields in a single statement."""

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(MediaRecord)
                    .where(MediaRecord.id == media_id)
                    .values(
                        streams_available=available,
                        stream_count=stream_count,
                        last_stream_check=checked_at,
                        streams_detail=detail or [],
                    )
                )
                if result.rowcount == 0:
                    await session.rollback()
                    raise PersistenceError(f"Media {media_id} not found")
                await session.commit()
                record = await session.get(MediaRecord, media_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to store stream status for media {media_id}: {exc}"
            ) from exc
        if record is None:
            raise PersistenceError(f"Media {media_id} disappeared while updating")
        return record

    async def record_verdict(
        self, media_id: int, verdict: AvailabilityVerdict
    ) -> MediaRecord:
        """Persist a verdict, keeping the availability fields consistent."""

        detail = verdict.detail_payload()
        available = verdict.available and verdict.stream_count > 0 and bool(detail)
        if not available:
            detail = []
        return await self.update_stream_status(
            media_id,
            available,
            verdict.stream_count if available else 0,
            verdict.last_checked,
            detail,
        )

    async def mark_watched(self, media_id: int, watched: bool = True) -> MediaRecord | None:
        async with self._session_factory() as session:
            record = await session.get(MediaRecord, media_id)
            if record is None:
                return None
            record.watched = watched
            record.watched_at = utcnow() if watched else None
            await session.commit()
            await session.refresh(record)
            return record

    async def delete_media(self, media_id: int) -> bool:
        async with self._session_factory() as session:
            record = await session.get(MediaRecord, media_id)
            if record is None:
                return False
            await session.delete(record)
            await session.commit()
            return True

    # Episodes --------------------------------------------------------------

    async def add_episodes(
        self, media_id: int, episodes: Iterable[tuple[int, int]]
    ) -> int:
        """Insert ``(season, episode)`` pairs that are not stored yet."""

        try:
            async with self._session_factory() as session:
                stmt = select(Episode.season_number, Episode.episode_number).where(
                    Episode.media_id == media_id
                )
                existing = {tuple(row) for row in (await session.execute(stmt)).all()}
                added = 0
                for season_number, episode_number in episodes:
                    key = (season_number, episode_number)
                    if key in existing:
                        continue
                    session.add(
                        Episode(
                            media_id=media_id,
                            season_number=season_number,
                            episode_number=episode_number,
                        )
                    )
                    existing.add(key)
                    added += 1
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to store episodes for media {media_id}: {exc}"
            ) from exc
        return added

    async def mark_episode_watched(self, episode_id: int, watched: bool = True) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Episode).where(Episode.id == episode_id).values(watched=watched)
            )
            await session.commit()

    async def get_episodes(self, media_id: int) -> list[Episode]:
        async with self._session_factory() as session:
            stmt = (
                select(Episode)
                .where(Episode.media_id == media_id)
                .order_by(Episode.season_number, Episode.episode_number)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def episodes_watched_status(self, media_id: int) -> EpisodeWatchStatus:
        async with self._session_factory() as session:
            stmt = select(Episode.watched).where(Episode.media_id == media_id)
            flags = [bool(row[0]) for row in (await session.execute(stmt)).all()]
        return EpisodeWatchStatus(total=len(flags), watched=sum(flags))

    async def _select(self, *conditions: Any) -> list[MediaRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(MediaRecord)
                .where(*conditions)
                .order_by(MediaRecord.added_at.desc(), MediaRecord.id.desc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
