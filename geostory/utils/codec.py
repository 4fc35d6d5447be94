# geostory/utils/codec.py
"""
Story payload codec.

A story is serialized to canonical JSON and then stored under one of a closed
set of encodings. The tag travels with the row, and decoding dispatches on the
tag alone:

- ``plain``: JSON text as-is
- ``br64``:  Brotli (text mode) + base64, the default for new stories
- ``gz64``:  zlib + base64

Rows written before the encoding column existed carry no tag and are read
as ``plain``.
"""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from dataclasses import dataclass
from typing import Any, Optional

import brotli

from geostory.middleware.error_handler import CorruptRecordError

PLAIN = "plain"
BROTLI_BASE64 = "br64"
ZLIB_BASE64 = "gz64"

KNOWN_TAGS = (PLAIN, BROTLI_BASE64, ZLIB_BASE64)

DEFAULT_BROTLI_QUALITY = 5
ZLIB_LEVEL = 6


@dataclass(frozen=True)
class EncodedStory:
    data: str
    tag: str
    raw_bytes: int
    compressed_bytes: Optional[int]

    @property
    def encoded_bytes(self) -> int:
        # base64 and JSON text are both measured as stored, in UTF-8 bytes
        return len(self.data.encode("utf-8"))


def normalize_tag(tag: Optional[str]) -> str:
    """Map a stored tag to a codec tag; untagged legacy rows are plain JSON."""
    if tag is None or not tag.strip():
        return PLAIN
    return tag.strip()


def canonical_json(document: Any) -> bytes:
    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def _compress(raw: bytes, tag: str, quality: int) -> bytes:
    if tag == BROTLI_BASE64:
        return brotli.compress(raw, mode=brotli.MODE_TEXT, quality=quality)
    if tag == ZLIB_BASE64:
        return zlib.compress(raw, ZLIB_LEVEL)
    raise ValueError(f"Unknown story encoding: {tag!r}")


def _decompress(blob: bytes, tag: str) -> bytes:
    if tag == BROTLI_BASE64:
        return brotli.decompress(blob)
    if tag == ZLIB_BASE64:
        return zlib.decompress(blob)
    raise CorruptRecordError(f"unknown encoding {tag!r}")


def encode(document: Any, tag: str = BROTLI_BASE64, quality: int = DEFAULT_BROTLI_QUALITY) -> EncodedStory:
    """Serialize ``document`` and encode it with ``tag``.

    Raises ValueError for an unknown tag or a document that is not JSON-serializable.
    """
    raw = canonical_json(document)
    if tag == PLAIN:
        return EncodedStory(data=raw.decode("utf-8"), tag=PLAIN, raw_bytes=len(raw), compressed_bytes=None)

    compressed = _compress(raw, tag, quality)
    b64 = base64.b64encode(compressed).decode("ascii")
    return EncodedStory(data=b64, tag=tag, raw_bytes=len(raw), compressed_bytes=len(compressed))


def decode(data: str, tag: Optional[str]) -> Any:
    """Decode a stored payload back to the story document.

    Any failure surfaces as CorruptRecordError.
    """
    tag = normalize_tag(tag)
    try:
        if tag == PLAIN:
            return json.loads(data)
        if tag not in KNOWN_TAGS:
            raise CorruptRecordError(f"unknown encoding {tag!r}")
        blob = base64.b64decode(data, validate=True)
        raw = _decompress(blob, tag)
        return json.loads(raw.decode("utf-8"))
    except CorruptRecordError:
        raise
    except (binascii.Error, brotli.error, zlib.error, UnicodeDecodeError, ValueError, TypeError) as e:
        raise CorruptRecordError(f"{tag}: {type(e).__name__}: {e}") from e
