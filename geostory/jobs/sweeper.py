# geostory/jobs/sweeper.py
# Periodic housekeeping: delete stories whose expiry has passed.
# Runs once at startup, then every SWEEP_INTERVAL_SECONDS, off the request path.

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, Optional

from geostory.config import Settings
from geostory.middleware.error_handler import StorageError
from geostory.repositories.story_repository import StoryRepository
from geostory.utils.logger import log_exception, log_info, log_warning

logger = logging.getLogger(__name__)

SWEEP_BACKOFF_STEP = 0.3
SWEEP_BACKOFF_JITTER = 0.2


class ExpirySweeper:
    def __init__(
        self,
        repository: StoryRepository,
        settings: Settings,
        clock: Callable[[], float] = time.time,
        backoff_step: float = SWEEP_BACKOFF_STEP,
        backoff_jitter: float = SWEEP_BACKOFF_JITTER,
    ):
        self.repository = repository
        self.settings = settings
        self.clock = clock
        self.backoff_step = backoff_step
        self.backoff_jitter = backoff_jitter
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> Optional[int]:
        """Run one sweep. Returns rows removed, or None if every attempt failed.

        Never raises (except cancellation).
        """
        attempts = self.settings.SWEEP_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                removed = await self.repository.delete_expired(int(self.clock()))
            except StorageError as e:
                if attempt == attempts:
                    log_warning(f"Housekeeping gave up after {attempts} attempts: {e.message}")
                    return None
                delay = self.backoff_step * attempt + random.uniform(0, self.backoff_jitter)
                log_warning(f"Housekeeping failed ({e.error_code}), retrying in {delay * 1000:.0f}ms")
                await asyncio.sleep(delay)
            except Exception as e:
                log_exception(e, context="Housekeeping sweep")
                return None
            else:
                if removed:
                    log_info(f"Cleaned expired stories: {removed}")
                else:
                    logger.debug("Housekeeping: nothing expired")
                return removed
        return None

    async def run_forever(self) -> None:
        while True:
            await self.sweep_once()
            await asyncio.sleep(self.settings.SWEEP_INTERVAL_SECONDS)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self.run_forever(), name="geostory-expiry-sweeper")
        log_info(f"Expiry sweeper started (interval {self.settings.SWEEP_INTERVAL_SECONDS:g}s)")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log_info("Expiry sweeper stopped")
