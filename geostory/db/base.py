from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from geostory.config import Settings
from geostory.utils.logger import log_info, log_exception


# Shared MetaData instance used by table definitions and schema bootstrap.
metadata: MetaData = MetaData()


def sqlite_url(db_path: str) -> str:
    """Build an aiosqlite URL for a database file path."""
    return f"sqlite+aiosqlite:///{os.path.abspath(db_path)}"


def _sqlite_pragmas(busy_timeout_ms: int) -> list[str]:
    # WAL: readers never block on the writer and vice versa.
    # synchronous=NORMAL: survives a process crash, not necessarily an OS crash.
    return [
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        "PRAGMA foreign_keys=ON",
        "PRAGMA temp_store=MEMORY",
        f"PRAGMA busy_timeout={int(busy_timeout_ms)}",
    ]


def _upgrade_legacy_schema(sync_conn) -> None:
    """Add the encoding column to stories tables created before it existed."""
    columns = {c["name"] for c in inspect(sync_conn).get_columns("stories")}
    if "encoding" not in columns:
        sync_conn.exec_driver_sql("ALTER TABLE stories ADD COLUMN encoding TEXT")
        log_info("Migrated stories table: added encoding column")


class Database:
    """Lazily opened, process-wide SQLite engine.

    The engine is created on first use. Concurrent first callers wait on the
    same lock, so only one initialization runs; a failed initialization is
    not cached and the next caller tries again.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: Optional[AsyncEngine] = None
        self._init_lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def _create_engine(self) -> AsyncEngine:
        # pool_size=1, max_overflow=0: one shared connection, callers queue for it
        engine = create_async_engine(
            sqlite_url(self.settings.DB_PATH),
            echo=self.settings.DEBUG,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=self.settings.DB_POOL_SIZE,
            max_overflow=0,
            pool_timeout=self.settings.DB_POOL_TIMEOUT_SECONDS,
        )
        pragmas = _sqlite_pragmas(self.settings.DB_BUSY_TIMEOUT_MS)

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            try:
                for pragma in pragmas:
                    cursor.execute(pragma)
            finally:
                cursor.close()

        return engine

    async def _bootstrap(self, engine: AsyncEngine) -> None:
        # registers the stories table on metadata
        from geostory.models import stories_table  # noqa: F401

        db_dir = os.path.dirname(os.path.abspath(self.settings.DB_PATH))
        os.makedirs(db_dir, exist_ok=True)

        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
            await conn.run_sync(_upgrade_legacy_schema)

    async def get_engine(self) -> AsyncEngine:
        if self._engine is not None:
            return self._engine

        async with self._init_lock:
            if self._engine is None:
                engine = self._create_engine()
                try:
                    await self._bootstrap(engine)
                except Exception as e:
                    log_exception(e, context=f"Database init ({self.settings.DB_PATH})")
                    await engine.dispose()
                    raise
                self._engine = engine
                log_info(f"Database ready at {self.settings.DB_PATH}")
        return self._engine

    async def init(self) -> None:
        """Open the engine eagerly (application startup)."""
        await self.get_engine()

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """Yield a connection inside a transaction committed on clean exit."""
        engine = await self.get_engine()
        async with engine.begin() as conn:
            yield conn

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """Yield a connection for read-only work."""
        engine = await self.get_engine()
        async with engine.connect() as conn:
            yield conn

    async def ping(self) -> bool:
        async with self.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1

    async def dispose(self) -> None:
        async with self._init_lock:
            if self._engine is not None:
                await self._engine.dispose()
                self._engine = None
                log_info("Database engine disposed")
