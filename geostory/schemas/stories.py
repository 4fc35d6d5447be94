from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class PublishRequest(BaseModel):
    """Body of POST /api/stories. Shape checks happen in the validator, not here."""
    model_config = ConfigDict(extra="ignore")

    state: Optional[Any] = None
    ttlDays: Optional[Any] = None


class PublishResponse(BaseModel):
    id: str
    url: str
    absolute_url: str
    expires_at: Optional[int] = None


class StoryResponse(BaseModel):
    id: str
    title: str
    state: Any
