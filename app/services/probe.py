"""Probe a user's Stremio addons for playable streams of a media item."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx

from ..classification import classify_stream, passes_filters
from ..db_models import MediaRecord
from ..exceptions import AddonListError, AddonQueryError, ResolutionMiss
from ..models import (
    AddonDescriptor,
    AddonEvidence,
    AvailabilityVerdict,
    FilterPreferences,
)
from ..utils import addon_base_url
from .id_resolver import ExternalIdResolver
from .stremio import StremioClient

logger = logging.getLogger(__name__)

NO_IMDB_ID = "No IMDB ID"
NO_STREAM_ADDONS = "No stream addons installed"

# Series availability is judged from the first episode only.
SENTINEL_SEASON = 1
SENTINEL_EPISODE = 1


def stream_lookup_key(content_type: str, imdb_id: str) -> str:
    """Return the addon stream id for an item (``tt..:1:1`` for series)."""

    if content_type == "series":
        return f"{imdb_id}:{SENTINEL_SEASON}:{SENTINEL_EPISODE}"
    return imdb_id


def stream_url(addon: AddonDescriptor, content_type: str, lookup_key: str) -> str:
    return f"{addon_base_url(addon.transport_url)}/stream/{content_type}/{lookup_key}.json"


class StreamProbe:
    """Runs one probe cycle per call; holds no per-item state."""

    def __init__(
        self,
        directory: StremioClient,
        resolver: ExternalIdResolver,
        http_client: httpx.AsyncClient,
        *,
        addon_timeout: float = 10.0,
        sample_limit: int = 10,
    ):
        self._directory = directory
        self._resolver = resolver
        self._client = http_client
        self._addon_timeout = addon_timeout
        self._sample_limit = sample_limit

    async def probe(
        self,
        item: MediaRecord,
        auth_key: str,
        selected_addon_ids: Sequence[str] | None = None,
        filters: FilterPreferences | None = None,
    ) -> AvailabilityVerdict:
        """Return the availability verdict for ``item`` across the user's addons.

        Cycle-terminal failures (no IMDB id, addon listing failed or empty)
        come back as an unavailable verdict carrying the reason.
        """

        try:
            imdb_id = await self._resolve(item)
            addons = await self._list_addons(item, auth_key)
        except (ResolutionMiss, AddonListError) as exc:
            return AvailabilityVerdict.unavailable(exc.message)

        if selected_addon_ids:
            selected = set(selected_addon_ids)
            addons = [addon for addon in addons if addon.id in selected]
            logger.info("Filtering to %d selected addons", len(addons))

        content_type = "movie" if item.type == "movie" else "series"
        lookup_key = stream_lookup_key(content_type, imdb_id)

        total_streams = 0
        evidence: list[AddonEvidence] = []
        for addon in addons:
            if not addon.supports(content_type):
                logger.debug("Skipping %s - doesn't support %s", addon.name, content_type)
                continue
            try:
                streams = await self._query_addon(addon, content_type, lookup_key)
            except AddonQueryError as exc:
                logger.info("Check failed for %s: %s", addon.name, exc)
                continue

            addon_evidence = self._collect_evidence(addon, streams, filters)
            if addon_evidence is None:
                continue
            total_streams += addon_evidence.stream_count
            evidence.append(addon_evidence)

        logger.info(
            "%s: %d streams from %d addons", item.title, total_streams, len(evidence)
        )
        return AvailabilityVerdict(
            available=total_streams > 0,
            stream_count=total_streams,
            addons=evidence,
        )

    async def _resolve(self, item: MediaRecord) -> str:
        imdb_id = await self._resolver.resolve_stream_id(item)
        if not imdb_id:
            logger.info("No IMDB ID for: %s", item.title)
            raise ResolutionMiss(NO_IMDB_ID)
        return imdb_id

    async def _list_addons(
        self, item: MediaRecord, auth_key: str
    ) -> list[AddonDescriptor]:
        try:
            addons = await self._directory.list_stream_capable_addons(auth_key)
        except AddonListError as exc:
            logger.warning("Failed to get addons for %s: %s", item.title, exc)
            raise type(exc)(f"Failed to get addons: {exc.message}") from exc
        if not addons:
            raise AddonListError(NO_STREAM_ADDONS)
        return addons

    async def _query_addon(
        self, addon: AddonDescriptor, content_type: str, lookup_key: str
    ) -> list[dict[str, Any]]:
        url = stream_url(addon, content_type, lookup_key)
        logger.debug("Checking addon %s at %s", addon.name, url)
        try:
            response = await asyncio.wait_for(
                self._client.get(url, timeout=self._addon_timeout),
                timeout=self._addon_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise AddonQueryError(
                f"timed out after {self._addon_timeout:g}s", addon.id
            ) from exc
        except httpx.HTTPError as exc:
            raise AddonQueryError(str(exc) or type(exc).__name__, addon.id) from exc

        if response.status_code >= 400:
            raise AddonQueryError(f"returned error: {response.status_code}", addon.id)
        try:
            payload = response.json()
        except ValueError as exc:
            raise AddonQueryError("returned invalid JSON", addon.id) from exc

        streams = payload.get("streams") if isinstance(payload, dict) else None
        if not isinstance(streams, list):
            return []
        return [stream for stream in streams if isinstance(stream, dict)]

    def _collect_evidence(
        self,
        addon: AddonDescriptor,
        streams: list[dict[str, Any]],
        filters: FilterPreferences | None,
    ) -> AddonEvidence | None:
        classified = [classify_stream(stream) for stream in streams]
        usable = [stream for stream in classified if passes_filters(stream, filters)]
        logger.debug(
            "%s returned %d streams, %d passed filters",
            addon.name,
            len(classified),
            len(usable),
        )
        if not usable:
            return None
        return AddonEvidence(
            id=addon.id,
            name=addon.name,
            stream_count=len(usable),
            streams=[stream.to_evidence() for stream in usable[: self._sample_limit]],
        )
