"""Database utilities for the Stackr sync service."""

from __future__ import annotations

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by every persisted table."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        from . import db_models  # noqa: F401  registers the mapped tables

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Add tracking columns introduced after the first collection schema."""

        inspector = inspect(sync_connection)
        if "collection_items" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("collection_items")
        }

        def _ensure_column(name: str, ddl: str) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            existing_columns.add(name)

        _ensure_column(
            "progress",
            "ALTER TABLE collection_items ADD COLUMN progress INTEGER",
        )
        _ensure_column(
            "notes",
            "ALTER TABLE collection_items ADD COLUMN notes TEXT",
        )
        _ensure_column(
            "date_started",
            "ALTER TABLE collection_items ADD COLUMN date_started DATETIME",
        )
        _ensure_column(
            "date_completed",
            "ALTER TABLE collection_items ADD COLUMN date_completed DATETIME",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()
