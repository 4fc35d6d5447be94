# geostory/utils/ids.py
# Story identifiers: random, URL-safe, short. Holding an id is enough to read the story.

import re
import secrets

STORY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{5,20}$")

DEFAULT_ID_LENGTH = 7
MIN_ID_LENGTH = 5
MAX_ID_LENGTH = 20


def generate_story_id(length: int = DEFAULT_ID_LENGTH) -> str:
    """Generate a URL-safe story id from 16 bytes of CSPRNG output."""
    if not MIN_ID_LENGTH <= length <= MAX_ID_LENGTH:
        raise ValueError(f"id length must be between {MIN_ID_LENGTH} and {MAX_ID_LENGTH}")
    # 16 bytes -> 22 base64url chars, enough for the longest allowed id
    return secrets.token_urlsafe(16)[:length]


def is_valid_story_id(value: object) -> bool:
    return isinstance(value, str) and STORY_ID_PATTERN.fullmatch(value) is not None
