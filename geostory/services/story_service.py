# geostory/services/story_service.py
"""
Publish / resolve operations for stories.

publish: rate limit -> validate -> encode -> size ceiling -> new id -> insert (retried on busy)
resolve: id shape -> select -> expiry check -> decode
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from geostory.config import Settings
from geostory.middleware.error_handler import (
    CorruptRecordError,
    DuplicateStoryIdError,
    InvalidShapeError,
    InvalidStoryIdError,
    PayloadTooLargeError,
    RateLimitError,
    StoryExpiredError,
    StoryNotFoundError,
)
from geostory.middleware.rate_limiter import FixedWindowCounter
from geostory.models.stories_table import StoryRecord
from geostory.repositories.story_repository import StoryRepository
from geostory.services.validator import validate_story
from geostory.utils import codec
from geostory.utils.ids import generate_story_id, is_valid_story_id
from geostory.utils.logger import log_info

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def now_seconds() -> int:
    return int(time.time())


@dataclass(frozen=True)
class PublishResult:
    id: str
    title: str
    created_at: int
    expires_at: Optional[int]
    encoding: str
    raw_bytes: int
    encoded_bytes: int


@dataclass(frozen=True)
class ResolvedStory:
    id: str
    title: str
    document: Any


class StoryService:
    """Entry point used by the HTTP layer."""

    def __init__(
        self,
        repository: StoryRepository,
        settings: Settings,
        limiter: Optional[FixedWindowCounter] = None,
        clock: Callable[[], int] = now_seconds,
    ):
        self.repository = repository
        self.settings = settings
        self.limiter = limiter
        self.clock = clock

    def _admit(self, client_key: str) -> None:
        if self.limiter is None:
            return
        allowed, _ = self.limiter.hit(client_key)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_key} on publish")
            raise RateLimitError(retry_after=self.limiter.retry_after())

    async def publish(self, state: Any, ttl_days: Any = None, client_key: str = "unknown") -> PublishResult:
        self._admit(client_key)

        story = validate_story(state, ttl_days, self.settings)
        try:
            encoded = codec.encode(story.document, self.settings.STORY_CODEC, self.settings.BROTLI_QUALITY)
        except (TypeError, ValueError) as e:
            # NaN/Infinity or non-JSON values
            raise InvalidShapeError("State must be plain JSON") from e

        # limit applies to the stored (encoded) size
        limit = self.settings.MAX_STATE_BYTES
        if encoded.encoded_bytes > limit:
            raise PayloadTooLargeError(
                encoded_bytes=encoded.encoded_bytes,
                limit=limit,
                raw_bytes=encoded.raw_bytes,
                compressed_bytes=encoded.compressed_bytes,
            )

        created = self.clock()
        expires = created + int(round(story.ttl_days * SECONDS_PER_DAY))

        attempts = self.settings.ID_COLLISION_RETRIES + 1
        for attempt in range(1, attempts + 1):
            record = StoryRecord(
                id=generate_story_id(self.settings.ID_LENGTH),
                created_at=created,
                expires_at=expires,
                title=story.title,
                state_json=encoded.data,
                encoding=encoded.tag,
            )
            try:
                await self.repository.insert(record)
                break
            except DuplicateStoryIdError:
                if attempt == attempts:
                    raise
                logger.warning(f"Story id collision on {record.id}, retrying with a fresh id")

        log_info(
            f"Published story id={record.id} layers={len(story.document['layers'])} "
            f"raw={encoded.raw_bytes}B encoded={encoded.encoded_bytes}B ({encoded.tag})"
        )
        return PublishResult(
            id=record.id,
            title=record.title,
            created_at=created,
            expires_at=expires,
            encoding=encoded.tag,
            raw_bytes=encoded.raw_bytes,
            encoded_bytes=encoded.encoded_bytes,
        )

    async def resolve(self, story_id: Any) -> ResolvedStory:
        if not is_valid_story_id(story_id):
            raise InvalidStoryIdError()

        record = await self.repository.select_by_id(story_id)
        if record is None:
            raise StoryNotFoundError()
        if record.is_expired(self.clock()):
            raise StoryExpiredError()

        try:
            document = codec.decode(record.state_json, record.encoding)
        except CorruptRecordError as e:
            logger.error(
                f"Corrupt story payload id={record.id} encoding={record.encoding} "
                f"stored_len={len(record.state_json)}: {e.reason}"
            )
            raise

        return ResolvedStory(id=record.id, title=record.title, document=document)
