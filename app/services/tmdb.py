"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/original"


@dataclass(slots=True)
class TMDBDetails:
    """Normalized view of a TMDB movie or TV detail payload."""

    tmdb_id: int
    type: str
    title: str
    imdb_id: str | None = None
    original_title: str | None = None
    overview: str | None = None
    poster: str | None = None
    backdrop: str | None = None
    year: int | None = None
    runtime: int | None = None
    genres: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TMDBSeason:
    season_number: int
    episode_count: int
    name: str | None = None
    air_date: str | None = None


class TMDBClient:
    """Client responsible for TMDB detail and external id lookups."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def resolve_imdb_id(self, tmdb_id: int, content_type: str) -> str | None:
        """Return the IMDB identifier for a TMDB entity, if TMDB knows it."""

        details = await self.fetch_details(tmdb_id, content_type)
        if details is None:
            return None
        return details.imdb_id

    async def fetch_details(
        self, tmdb_id: int, content_type: str
    ) -> TMDBDetails | None:
        """Fetch details, including external IDs, for a TMDB entity."""

        media_type = "movie" if content_type == "movie" else "tv"
        params = {
            "api_key": self._settings.tmdb_api_key,
            "append_to_response": "external_ids",
        }
        try:
            response = await self._client.get(f"/{media_type}/{tmdb_id}", params=params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB details request failed for %s: %s", tmdb_id, exc)
            return None
        if response.status_code >= 400:
            logger.debug(
                "TMDB details fetch failed for %s: %s", tmdb_id, response.text
            )
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("TMDB returned invalid JSON for %s", tmdb_id)
            return None
        if not isinstance(payload, dict):
            return None
        return self._parse_details(payload, content_type)

    async def fetch_seasons(self, tmdb_id: int) -> list[TMDBSeason]:
        """Return regular seasons (specials excluded) for a TV show."""

        params = {"api_key": self._settings.tmdb_api_key}
        try:
            response = await self._client.get(f"/tv/{tmdb_id}", params=params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB seasons request failed for %s: %s", tmdb_id, exc)
            return []
        if response.status_code >= 400:
            return []
        try:
            payload = response.json()
        except ValueError:
            logger.warning("TMDB returned invalid JSON for seasons of %s", tmdb_id)
            return []
        if not isinstance(payload, dict):
            return []
        seasons: list[TMDBSeason] = []
        for entry in payload.get("seasons") or []:
            if not isinstance(entry, dict):
                continue
            number = entry.get("season_number")
            if not isinstance(number, int) or number <= 0:
                continue
            seasons.append(
                TMDBSeason(
                    season_number=number,
                    episode_count=int(entry.get("episode_count") or 0),
                    name=entry.get("name"),
                    air_date=entry.get("air_date"),
                )
            )
        return seasons

    def _parse_details(
        self, payload: dict[str, Any], content_type: str
    ) -> TMDBDetails | None:
        try:
            tmdb_id = int(payload.get("id"))
        except (TypeError, ValueError):
            logger.debug("TMDB payload without a usable id: %s", payload)
            return None
        is_movie = content_type == "movie"
        external = payload.get("external_ids")
        if not isinstance(external, dict):
            external = {}
        genres = [
            str(genre.get("name"))
            for genre in payload.get("genres") or []
            if isinstance(genre, dict) and genre.get("name")
        ]
        runtime = payload.get("runtime")
        if not runtime:
            episode_runtimes = payload.get("episode_run_time") or []
            runtime = episode_runtimes[0] if episode_runtimes else None
        return TMDBDetails(
            tmdb_id=tmdb_id,
            type="movie" if is_movie else "series",
            title=str(payload.get("title") or payload.get("name") or ""),
            imdb_id=external.get("imdb_id") or payload.get("imdb_id") or None,
            original_title=payload.get("original_title") or payload.get("original_name"),
            overview=payload.get("overview"),
            poster=self._build_image_url(payload.get("poster_path"), POSTER_BASE_URL),
            backdrop=self._build_image_url(
                payload.get("backdrop_path"), BACKDROP_BASE_URL
            ),
            year=self._extract_year(payload, content_type),
            runtime=runtime,
            genres=genres,
        )

    @staticmethod
    def _extract_year(result: dict[str, Any], content_type: str) -> int | None:
        date_key = "release_date" if content_type == "movie" else "first_air_date"
        date_value = result.get(date_key)
        if not isinstance(date_value, str) or len(date_value) < 4:
            return None
        try:
            return int(date_value[:4])
        except ValueError:
            return None

    @staticmethod
    def _build_image_url(path: str | None, base_url: str) -> str | None:
        if not path:
            return None
        if path.startswith("http"):
            return path
        return f"{base_url}{path}"
