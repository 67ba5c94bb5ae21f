"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import FilterPreferences
from .utils import utcnow


class User(Base):
    """A request-manager user owning media and a Stremio credential."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stremio_auth_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_addons: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    language_tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    min_resolution: Mapped[str | None] = mapped_column(String(8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    media: Mapped[list["MediaRecord"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def filter_preferences(self) -> FilterPreferences | None:
        """Return the user's stream filters, or ``None`` when none are set."""

        preferences = FilterPreferences(
            language_tags=self.language_tags or [],
            min_resolution=self.min_resolution,
        )
        if preferences.is_empty():
            return None
        return preferences


class MediaRecord(Base):
    """A requested movie or series and its latest availability verdict."""

    __tablename__ = "media"
    __table_args__ = (
        UniqueConstraint("user_id", "type", "tmdb_id", name="uq_media_user_tmdb"),
        Index("idx_media_type", "type"),
        Index("idx_media_streams", "streams_available"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    type: Mapped[str] = mapped_column(String(16))
    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    imdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    tvdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String(255))
    original_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    poster: Mapped[str | None] = mapped_column(String(512), nullable=True)
    backdrop: Mapped[str | None] = mapped_column(String(512), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    runtime: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="requested")
    monitored: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    watched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    watched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    streams_available: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    stream_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_stream_check: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    streams_detail: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON, nullable=True
    )
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user: Mapped[User | None] = relationship(back_populates="media")
    episodes: Mapped[list["Episode"]] = relationship(
        back_populates="media", cascade="all, delete-orphan"
    )

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-friendly representation for API consumers."""

        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "tmdbId": self.tmdb_id,
            "imdbId": self.imdb_id,
            "tvdbId": self.tvdb_id,
            "title": self.title,
            "originalTitle": self.original_title,
            "year": self.year,
            "overview": self.overview,
            "poster": self.poster,
            "backdrop": self.backdrop,
            "genres": list(self.genres or []),
            "runtime": self.runtime,
            "status": self.status,
            "monitored": self.monitored,
            "watched": self.watched,
            "watchedAt": self.watched_at.isoformat() if self.watched_at else None,
            "addedAt": self.added_at.isoformat() if self.added_at else None,
            "streamsAvailable": self.streams_available,
            "streamCount": self.stream_count,
            "lastStreamCheck": (
                self.last_stream_check.isoformat() if self.last_stream_check else None
            ),
            "streamsDetail": list(self.streams_detail or []),
        }


class Episode(Base):
    """Episode metadata used to decide when a series is fully watched."""

    __tablename__ = "episodes"
    __table_args__ = (
        UniqueConstraint(
            "media_id", "season_number", "episode_number", name="uq_episode_number"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("media.id", ondelete="CASCADE"), index=True
    )
    season_number: Mapped[int] = mapped_column(Integer)
    episode_number: Mapped[int] = mapped_column(Integer)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    air_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    monitored: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    watched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    media: Mapped[MediaRecord] = relationship(back_populates="episodes")
