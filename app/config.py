"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="SeerrCatalog", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    stremio_api_url: HttpUrl = Field(
        default="https://api.strem.io/api", alias="STREMIO_API_URL"
    )
    cinemeta_url: HttpUrl | None = Field(
        default="https://v3-cinemeta.strem.io",
        alias="CINEMETA_URL",
        validation_alias=AliasChoices("CINEMETA_URL", "METADATA_ADDON_URL"),
    )
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")

    addon_timeout_seconds: float = Field(
        default=10.0, alias="ADDON_TIMEOUT", gt=0, le=120
    )
    stream_sample_limit: int = Field(
        default=10, alias="STREAM_SAMPLE_LIMIT", ge=1, le=100
    )
    recheck_interval_seconds: int = Field(
        default=86_400, alias="RECHECK_INTERVAL", ge=60
    )
    recheck_startup_delay_seconds: float = Field(
        default=60.0, alias="RECHECK_STARTUP_DELAY", ge=0
    )
    recheck_pacing_seconds: float = Field(
        default=1.0, alias="RECHECK_PACING", ge=0
    )
    recheck_jitter_seconds: float = Field(
        default=0.5, alias="RECHECK_JITTER", ge=0
    )
    freshness_interval_seconds: int = Field(
        default=3_600, alias="FRESHNESS_INTERVAL", ge=60
    )
    reverify_pacing_seconds: float = Field(
        default=0.5, alias="REVERIFY_PACING", ge=0
    )
    cleanup_watched: bool = Field(default=True, alias="CLEANUP_WATCHED")

    jellyseerr_url: HttpUrl | None = Field(default=None, alias="JELLYSEERR_URL")
    jellyseerr_api_key: str | None = Field(default=None, alias="JELLYSEERR_API_KEY")

    discord_webhooks: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), alias="DISCORD_WEBHOOKS"
    )
    notifications_enabled: bool = Field(default=True, alias="NOTIFICATIONS_ENABLED")
    notifications_language: Literal["en", "fr"] = Field(
        default="en", alias="NOTIFICATIONS_LANGUAGE"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./seerrcatalog.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", "jellyseerr_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("jellyseerr_url", mode="before")
    @classmethod
    def _blank_url(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("notifications_language", mode="before")
    @classmethod
    def _normalise_language(cls, value: object) -> object:
        """Fall back to English for anything other than French."""

        if isinstance(value, str) and value.strip().lower() == "fr":
            return "fr"
        return "en"

    @field_validator("discord_webhooks", mode="before")
    @classmethod
    def _parse_webhooks(cls, value: object) -> tuple[str, ...]:
        """Normalise webhook URLs from comma separated environment values."""

        if value is None:
            return ()
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("DISCORD_WEBHOOKS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if not entry:
                continue
            if "discord.com/api/webhooks/" not in entry:
                raise ValueError("Invalid Discord webhook URL configured")
            if entry not in cleaned:
                cleaned.append(entry)
        return tuple(cleaned)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
