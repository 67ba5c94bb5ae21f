"""Database utilities for the SeerrCatalog service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = set(inspector.get_table_names())

        def _ensure_columns(
            table: str, columns: tuple[tuple[str, str, str | None], ...]
        ) -> None:
            if table not in table_names:
                return
            existing_columns = {
                column["name"] for column in inspector.get_columns(table)
            }
            for name, ddl, init_sql in columns:
                if name in existing_columns:
                    continue
                sync_connection.execute(text(ddl))
                if init_sql:
                    sync_connection.execute(text(init_sql))
                existing_columns.add(name)

        _ensure_columns(
            "users",
            (
                (
                    "stremio_auth_key",
                    "ALTER TABLE users ADD COLUMN stremio_auth_key TEXT",
                    None,
                ),
                (
                    "selected_addons",
                    "ALTER TABLE users ADD COLUMN selected_addons JSON",
                    None,
                ),
                (
                    "language_tags",
                    "ALTER TABLE users ADD COLUMN language_tags JSON",
                    "UPDATE users SET language_tags = '[]' WHERE language_tags IS NULL",
                ),
                (
                    "min_resolution",
                    "ALTER TABLE users ADD COLUMN min_resolution VARCHAR(8)",
                    None,
                ),
            ),
        )
        _ensure_columns(
            "media",
            (
                (
                    "streams_detail",
                    "ALTER TABLE media ADD COLUMN streams_detail JSON",
                    "UPDATE media SET streams_detail = '[]' WHERE streams_detail IS NULL",
                ),
            ),
        )
        _ensure_columns(
            "episodes",
            (
                (
                    "watched",
                    "ALTER TABLE episodes ADD COLUMN watched BOOLEAN DEFAULT 0",
                    "UPDATE episodes SET watched = 0 WHERE watched IS NULL",
                ),
            ),
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session
