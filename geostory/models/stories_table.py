# geostory/models/stories_table.py
# Published stories: one write-once row per short link

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import Table, Column, Text, Integer, Index

from geostory.db.base import metadata
from geostory.utils.codec import normalize_tag


stories = Table(
    'stories',
    metadata,
    Column('id', Text, primary_key=True),  # short URL-safe ID
    Column('created_at', Integer, nullable=False),  # epoch seconds
    Column('expires_at', Integer, nullable=True),  # epoch seconds, NULL = never
    Column('title', Text),
    Column('state_json', Text, nullable=False),  # codec output
    Column('encoding', Text, nullable=True),  # codec tag, NULL on pre-tag rows
    Index('ix_stories_expires_at', 'expires_at'),
    Index('ix_stories_created_at', 'created_at'),
)


def is_expired(expires_at: Optional[int], now: int) -> bool:
    """Python twin of the sweeper's SQL predicate: expires_at IS NOT NULL AND expires_at < now."""
    return expires_at is not None and expires_at < now


@dataclass(frozen=True)
class StoryRecord:
    id: str
    created_at: int
    expires_at: Optional[int]
    title: str
    state_json: str
    encoding: str

    def is_expired(self, now: int) -> bool:
        return is_expired(self.expires_at, now)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StoryRecord":
        return cls(
            id=row["id"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            title=row["title"] or "Untitled",
            state_json=row["state_json"],
            encoding=normalize_tag(row["encoding"]),
        )

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "title": self.title,
            "state_json": self.state_json,
            "encoding": self.encoding,
        }
