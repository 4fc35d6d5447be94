# geostory/repositories/story_repository.py
# Repository for published stories (write-once rows with optional expiry)

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from geostory.config import Settings
from geostory.db.base import Database
from geostory.db.retry import is_busy_error, run_with_busy_retry
from geostory.middleware.error_handler import (
    DuplicateStoryIdError,
    StorageBusyError,
    StorageFaultError,
)
from geostory.models.stories_table import StoryRecord, stories

logger = logging.getLogger(__name__)


class StoryRepository:
    """Durable store for stories.

    Writes (insert, delete_expired) are retried on SQLITE_BUSY with jittered
    backoff; reads are not retried.
    """

    def __init__(self, database: Database, settings: Settings):
        self.database = database
        self.settings = settings

    async def _write(self, operation, name: str):
        return await run_with_busy_retry(
            operation,
            attempts=self.settings.DB_WRITE_ATTEMPTS,
            base_delay=self.settings.RETRY_BASE_DELAY_MS / 1000.0,
            jitter=self.settings.RETRY_JITTER_MS / 1000.0,
            name=name,
        )

    async def insert(self, record: StoryRecord) -> None:
        """Insert a new story row. Never overwrites an existing id."""

        async def _insert() -> None:
            async with self.database.begin() as conn:
                await conn.execute(insert(stories).values(**record.to_row()))

        try:
            await self._write(_insert, "insert-story")
        except IntegrityError as e:
            raise DuplicateStoryIdError(record.id) from e
        except StorageBusyError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"insert-story failed for id={record.id}: {type(e).__name__}: {e}")
            raise StorageFaultError(details={"operation": "insert-story"}) from e

    async def select_by_id(self, story_id: str) -> Optional[StoryRecord]:
        """Return the stored row, expired or not; expiry is the caller's check."""
        try:
            async with self.database.connect() as conn:
                result = await conn.execute(select(stories).where(stories.c.id == story_id))
                row = result.mappings().first()
        except SQLAlchemyError as e:
            if is_busy_error(e):
                raise StorageBusyError(details={"operation": "select-story"}) from e
            raise StorageFaultError(details={"operation": "select-story"}) from e

        if row is None:
            return None
        return StoryRecord.from_row(row)

    async def delete_expired(self, now: int) -> int:
        """Delete rows whose expiry has passed; returns the number removed."""

        async def _delete() -> int:
            async with self.database.begin() as conn:
                result = await conn.execute(
                    delete(stories).where(
                        stories.c.expires_at.is_not(None),
                        stories.c.expires_at < now,
                    )
                )
                return max(result.rowcount or 0, 0)

        try:
            return await self._write(_delete, "purge-expired")
        except StorageBusyError:
            raise
        except SQLAlchemyError as e:
            raise StorageFaultError(details={"operation": "purge-expired"}) from e

    async def ping(self) -> bool:
        return await self.database.ping()
