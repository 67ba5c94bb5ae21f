"""Pydantic models describing addons, stream evidence and verdicts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import utcnow

ContentType = Literal["movie", "series"]
Resolution = Literal["480p", "720p", "1080p", "4K"]

MAX_LANGUAGE_TAGS = 2


@dataclass(slots=True)
class AddonDescriptor:
    """A stream-capable addon installed on a Stremio account."""

    id: str
    name: str
    version: str
    transport_url: str
    types: list[str] = field(default_factory=list)
    resources: list[Any] = field(default_factory=list)

    def supports(self, content_type: str) -> bool:
        return content_type in self.types


class StreamEvidence(BaseModel):
    """User-facing summary of one stream returned by an addon."""

    name: str
    title: str = ""
    quality: str = ""
    size: str = ""


class AddonEvidence(BaseModel):
    """Streams retained from a single addon during a probe cycle."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    stream_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("stream_count", "streamCount"),
        serialization_alias="streamCount",
    )
    streams: list[StreamEvidence] = Field(default_factory=list)


class FilterPreferences(BaseModel):
    """Per-user language and resolution requirements for streams."""

    model_config = ConfigDict(populate_by_name=True)

    language_tags: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("language_tags", "languageTags"),
    )
    min_resolution: Resolution | None = Field(
        default=None,
        validation_alias=AliasChoices("min_resolution", "minResolution"),
    )

    @field_validator("language_tags", mode="before")
    @classmethod
    def _clean_tags(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        cleaned: list[str] = []
        for entry in value:  # type: ignore[union-attr]
            tag = str(entry).strip().upper()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        if len(cleaned) > MAX_LANGUAGE_TAGS:
            raise ValueError(f"At most {MAX_LANGUAGE_TAGS} language tags are supported")
        return cleaned

    @field_validator("min_resolution", mode="before")
    @classmethod
    def _normalise_resolution(cls, value: object) -> object:
        if value is None:
            return None
        text = str(value).strip()
        if not text:
            return None
        if text.upper() in {"4K", "2160P"}:
            return "4K"
        return text.lower()

    def is_empty(self) -> bool:
        return not self.language_tags and self.min_resolution is None


class AvailabilityVerdict(BaseModel):
    """Outcome of one probe cycle for one media item."""

    available: bool = False
    stream_count: int = Field(default=0, ge=0)
    addons: list[AddonEvidence] = Field(default_factory=list)
    reason: str | None = None
    last_checked: datetime = Field(default_factory=utcnow)

    @classmethod
    def unavailable(cls, reason: str) -> "AvailabilityVerdict":
        return cls(available=False, stream_count=0, addons=[], reason=reason)

    def detail_payload(self) -> list[dict[str, Any]]:
        """Return the JSON snapshot persisted alongside the media record."""

        return [addon.model_dump(mode="json", by_alias=True) for addon in self.addons]


class MediaCreate(BaseModel):
    """Payload registering a requested movie or series."""

    model_config = ConfigDict(populate_by_name=True)

    type: ContentType
    user_id: int | None = Field(
        default=None, validation_alias=AliasChoices("user_id", "userId")
    )
    tmdb_id: int | None = Field(
        default=None, validation_alias=AliasChoices("tmdb_id", "tmdbId")
    )
    imdb_id: str | None = Field(
        default=None, validation_alias=AliasChoices("imdb_id", "imdbId")
    )
    tvdb_id: int | None = Field(
        default=None, validation_alias=AliasChoices("tvdb_id", "tvdbId")
    )
    title: str
    original_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("original_title", "originalTitle"),
    )
    year: int | None = None
    overview: str | None = None
    poster: str | None = None
    backdrop: str | None = None
    genres: list[str] = Field(default_factory=list)
    runtime: int | None = None
    monitored: bool = True

    @field_validator("imdb_id", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class UserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1, max_length=120)
    display_name: str | None = Field(
        default=None, validation_alias=AliasChoices("display_name", "displayName")
    )
    is_admin: bool = Field(
        default=False, validation_alias=AliasChoices("is_admin", "isAdmin")
    )


class StremioCredentials(BaseModel):
    """Either an existing auth key or account credentials to log in with."""

    model_config = ConfigDict(populate_by_name=True)

    auth_key: str | None = Field(
        default=None, validation_alias=AliasChoices("auth_key", "authKey")
    )
    email: str | None = None
    password: str | None = None

    @model_validator(mode="after")
    def _require_key_or_login(self) -> "StremioCredentials":
        if self.auth_key and self.auth_key.strip():
            self.auth_key = self.auth_key.strip()
            return self
        if self.email and self.password:
            self.auth_key = None
            return self
        raise ValueError("Provide an authKey or an email and password")


class AddonSelection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    addon_ids: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("addon_ids", "addonIds")
    )


class WatchedUpdate(BaseModel):
    """Mark a whole item, or a single episode of a series, as watched."""

    watched: bool = True
    season: int | None = Field(default=None, ge=0)
    episode: int | None = Field(default=None, ge=0)
