# geostory/services/validator.py
# Shape and bounds checks applied to a story before it is encoded and stored.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from geostory.config import Settings
from geostory.middleware.error_handler import (
    EmptyLayersError,
    InvalidShapeError,
    InvalidTTLError,
    TooManyLayersError,
)

UNTITLED = "Untitled"


@dataclass(frozen=True)
class ValidatedStory:
    document: Dict[str, Any]
    title: str
    ttl_days: float


def sanitize_title(value: Any, max_len: int) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()[:max_len]
    return UNTITLED


def parse_ttl_days(value: Any, settings: Settings) -> float:
    """Parse ttlDays; None means the configured default."""
    if value is None:
        return float(settings.DEFAULT_TTL_DAYS)
    # bool is an int subclass; true/false is not a duration
    if isinstance(value, bool):
        raise InvalidTTLError(settings.MIN_TTL_DAYS, settings.MAX_TTL_DAYS)
    if isinstance(value, (int, float)):
        ttl = float(value)
    elif isinstance(value, str):
        try:
            ttl = float(value.strip())
        except ValueError:
            raise InvalidTTLError(settings.MIN_TTL_DAYS, settings.MAX_TTL_DAYS) from None
    else:
        raise InvalidTTLError(settings.MIN_TTL_DAYS, settings.MAX_TTL_DAYS)

    if not math.isfinite(ttl) or ttl < settings.MIN_TTL_DAYS or ttl > settings.MAX_TTL_DAYS:
        raise InvalidTTLError(settings.MIN_TTL_DAYS, settings.MAX_TTL_DAYS)
    return ttl


def validate_story(state: Any, ttl_days: Optional[Any], settings: Settings) -> ValidatedStory:
    """Validate a story payload, raising the first ValidationError found.

    Order: shape, empty layers, too many layers, title, ttl.
    """
    if not isinstance(state, dict) or not isinstance(state.get("layers"), list):
        raise InvalidShapeError()

    layers = state["layers"]
    if len(layers) == 0:
        raise EmptyLayersError()
    if len(layers) > settings.MAX_LAYERS:
        raise TooManyLayersError(settings.MAX_LAYERS, len(layers))

    title = sanitize_title(state.get("title"), settings.MAX_TITLE_LEN)
    ttl = parse_ttl_days(ttl_days, settings)

    return ValidatedStory(document=state, title=title, ttl_days=ttl)
