"""Resolve the IMDB identifier addons expect for stream lookups."""

from __future__ import annotations

import logging
from typing import Protocol

from ..db_models import MediaRecord
from ..exceptions import PersistenceError
from .metadata_addon import MetadataAddonClient
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)


class ImdbIdWriter(Protocol):
    async def set_imdb_id(self, media_id: int, imdb_id: str) -> None: ...


class ExternalIdResolver:
    """Map TMDB ids to IMDB ids via TMDB first, then the metadata add-on."""

    def __init__(
        self,
        store: ImdbIdWriter,
        *,
        tmdb_client: TMDBClient | None = None,
        metadata_client: MetadataAddonClient | None = None,
    ):
        self._store = store
        self._tmdb = tmdb_client
        self._metadata = metadata_client

    async def resolve_stream_id(self, item: MediaRecord) -> str | None:
        """Return the stream lookup id for ``item`` or ``None`` when unknown.

        Newly resolved ids are written back to the store and onto ``item`` so
        later probes skip the metadata round trip.
        """

        if item.imdb_id:
            return item.imdb_id
        if not item.tmdb_id:
            return None

        imdb_id = await self._lookup(item.tmdb_id, item.type)
        if not imdb_id:
            logger.info("No IMDB ID found for %s (tmdb:%s)", item.title, item.tmdb_id)
            return None

        item.imdb_id = imdb_id
        if item.id is not None:
            try:
                await self._store.set_imdb_id(item.id, imdb_id)
            except PersistenceError as exc:
                logger.warning("Could not save IMDB ID for %s: %s", item.title, exc)
        logger.info("Resolved IMDB ID for %s: %s", item.title, imdb_id)
        return imdb_id

    async def _lookup(self, tmdb_id: int, content_type: str) -> str | None:
        if self._tmdb is not None:
            imdb_id = await self._tmdb.resolve_imdb_id(tmdb_id, content_type)
            if imdb_id:
                return imdb_id
        if self._metadata is not None:
            return await self._metadata.resolve_imdb_id(
                tmdb_id, content_type=content_type
            )
        return None
