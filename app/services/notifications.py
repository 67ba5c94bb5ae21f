"""Outbound notifications: Jellyseerr sync triggers and Discord webhooks."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..db_models import MediaRecord
from ..models import FilterPreferences
from ..utils import utcnow

logger = logging.getLogger(__name__)

RADARR_ICON_URL = "https://cdn.jsdelivr.net/gh/homarr-labs/dashboard-icons/webp/radarr.webp"
SONARR_ICON_URL = "https://cdn.jsdelivr.net/gh/homarr-labs/dashboard-icons/webp/sonarr.webp"
NO_SOURCE_COLOR = 0xFFA500
TEST_COLOR = 0x00FF00

TRANSLATIONS: dict[str, dict[str, str]] = {
    "en": {
        "no_source_title": "⚠️ No Source Found",
        "test_title": "✅ Test Notification",
        "test_description": "Discord webhook is working correctly!",
        "type": "Type",
        "media": "Media",
        "movie": "Movie",
        "series": "Series",
        "filters": "Search Filters",
        "languages": "Languages",
        "resolution": "Min Resolution",
        "no_filters": "None",
    },
    "fr": {
        "no_source_title": "⚠️ Aucune Source Trouvée",
        "test_title": "✅ Notification de Test",
        "test_description": "Le webhook Discord fonctionne correctement !",
        "type": "Type",
        "media": "Média",
        "movie": "Film",
        "series": "Série",
        "filters": "Filtres de recherche",
        "languages": "Langues",
        "resolution": "Résolution min",
        "no_filters": "Aucun",
    },
}


class NotificationDispatcher:
    """Fan out availability transitions to Jellyseerr and Discord."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def jellyseerr_base_url(self) -> str | None:
        if self._settings.jellyseerr_url is None:
            return None
        return str(self._settings.jellyseerr_url).rstrip("/")

    async def on_available(self, item: MediaRecord) -> bool:
        """Ask Jellyseerr to re-poll the emulated Radarr/Sonarr APIs."""

        if self.jellyseerr_base_url is None:
            logger.info("No Jellyseerr URL configured, skipping sync for %s", item.title)
            return False
        synced = await self.trigger_jellyseerr_sync()
        logger.info("Notified Jellyseerr about available: %s", item.title)
        return synced

    async def on_unavailable(
        self, item: MediaRecord, preferences: FilterPreferences | None = None
    ) -> None:
        """Post a "no source found" embed to every configured webhook."""

        if not self._settings.notifications_enabled:
            logger.info("Discord notifications disabled, skipping")
            return
        await self._send_to_all_webhooks(self.build_no_source_embed(item, preferences))

    async def send_test(self) -> None:
        lang = self._translations
        await self._send_to_all_webhooks(
            {
                "title": lang["test_title"],
                "description": lang["test_description"],
                "color": TEST_COLOR,
                "timestamp": utcnow().isoformat() + "Z",
            }
        )

    async def trigger_jellyseerr_sync(self) -> bool:
        base_url = self.jellyseerr_base_url
        if base_url is None:
            return False

        headers = {"Content-Type": "application/json"}
        if self._settings.jellyseerr_api_key:
            headers["X-Api-Key"] = self._settings.jellyseerr_api_key

        results: list[bool] = []
        for service in ("radarr", "sonarr"):
            url = f"{base_url}/api/v1/settings/{service}/sync"
            try:
                response = await self._client.get(url, headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("Jellyseerr %s sync trigger failed: %s", service, exc)
                results.append(False)
                continue
            if response.status_code >= 400:
                logger.warning(
                    "Jellyseerr %s sync request failed: %s",
                    service,
                    response.status_code,
                )
                results.append(False)
            else:
                logger.info("Jellyseerr %s sync triggered", service)
                results.append(True)
        return all(results)

    def build_no_source_embed(
        self, item: MediaRecord, preferences: FilterPreferences | None
    ) -> dict[str, Any]:
        lang = self._translations
        is_movie = item.type == "movie"
        type_name = lang["movie"] if is_movie else lang["series"]

        description = f"**{lang['type']}:** {type_name}\n\n"
        description += f"**IMDB ID:** `{item.imdb_id or 'N/A'}`\n"
        if item.imdb_id:
            description += f"https://www.imdb.com/title/{item.imdb_id}\n"
        description += "\n"
        description += f"**TMDB ID:** `{item.tmdb_id or 'N/A'}`\n"
        if item.tmdb_id:
            tmdb_type = "movie" if is_movie else "tv"
            description += f"https://www.themoviedb.org/{tmdb_type}/{item.tmdb_id}\n"

        filters_value = lang["no_filters"]
        if preferences is not None:
            parts: list[str] = []
            if preferences.language_tags:
                parts.append(
                    f"**{lang['languages']}:** {', '.join(preferences.language_tags)}"
                )
            if preferences.min_resolution:
                parts.append(f"**{lang['resolution']}:** {preferences.min_resolution}")
            if parts:
                filters_value = "\n".join(parts)

        embed: dict[str, Any] = {
            "title": lang["no_source_title"],
            "description": description,
            "color": NO_SOURCE_COLOR,
            "author": {
                "name": type_name,
                "icon_url": RADARR_ICON_URL if is_movie else SONARR_ICON_URL,
            },
            "fields": [
                {
                    "name": lang["media"],
                    "value": f"**{item.title}** ({item.year or 'N/A'})",
                    "inline": False,
                },
                {"name": lang["filters"], "value": filters_value, "inline": False},
            ],
            "timestamp": utcnow().isoformat() + "Z",
        }
        if item.poster:
            embed["thumbnail"] = {"url": item.poster}
        return embed

    @property
    def _translations(self) -> dict[str, str]:
        return TRANSLATIONS.get(self._settings.notifications_language, TRANSLATIONS["en"])

    async def _send_to_all_webhooks(self, embed: dict[str, Any]) -> None:
        webhooks = self._settings.discord_webhooks
        if not webhooks:
            logger.info("No Discord webhooks configured, skipping notification")
            return

        payload = {"embeds": [embed]}
        for webhook_url in webhooks:
            try:
                response = await self._client.post(webhook_url, json=payload)
            except httpx.HTTPError as exc:
                logger.error("Failed to send Discord notification: %s", exc)
                continue
            if response.status_code >= 400:
                logger.error(
                    "Discord webhook failed (%s): %s",
                    response.status_code,
                    response.text,
                )
            else:
                logger.info("Discord notification sent")
