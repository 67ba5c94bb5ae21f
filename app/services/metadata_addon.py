"""Helper client for resolving identifiers via Cinemeta-compatible add-ons."""

from __future__ import annotations

import asyncio
import logging

import httpx

from ..utils import addon_base_url

logger = logging.getLogger(__name__)


class MetadataAddonClient:
    """Wrapper around Cinemeta-compatible meta endpoints."""

    _META_PATH = "/meta/{type}/tmdb:{tmdb_id}.json"

    def __init__(self, http_client: httpx.AsyncClient, base_url: str | None) -> None:
        self._client = http_client
        self._base_url = self._normalize_base_url(base_url)
        self._semaphore = asyncio.Semaphore(8)

    async def resolve_imdb_id(self, tmdb_id: int, *, content_type: str) -> str | None:
        """Return the IMDB id the add-on maps a TMDB id to, if any."""

        if not self._base_url:
            return None

        meta_type = "movie" if content_type == "movie" else "series"
        path = self._META_PATH.format(type=meta_type, tmdb_id=tmdb_id)
        url = f"{self._base_url}{path}"

        response: httpx.Response | None = None
        max_attempts = 2
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._semaphore:
                    response = await self._client.get(url)
                response.raise_for_status()
                break
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code if exc.response else None
                if status == 402 and attempt < max_attempts:
                    await asyncio.sleep(0.1)
                    continue
                logger.warning(
                    "Metadata add-on lookup failed for tmdb:%s via %s: %s",
                    tmdb_id,
                    self._base_url,
                    exc,
                )
                return None
            except httpx.HTTPError as exc:
                logger.warning(
                    "Metadata add-on lookup failed for tmdb:%s via %s: %s",
                    tmdb_id,
                    self._base_url,
                    exc,
                )
                return None
        else:
            return None

        try:
            payload = response.json()
        except ValueError:
            return None
        meta = payload.get("meta") if isinstance(payload, dict) else None
        if not isinstance(meta, dict):
            return None
        for candidate in (meta.get("imdb_id"), meta.get("id")):
            if isinstance(candidate, str) and candidate.startswith("tt"):
                return candidate
        return None

    @staticmethod
    def _normalize_base_url(value: str | None) -> str | None:
        return addon_base_url(value or "") or None
