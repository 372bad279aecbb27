from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

import aiofiles

from .library import ItemCache
from .models import NotFound, RangeNotSatisfiable

logger = logging.getLogger(__name__)

AUDIO_CONTENT_TYPE = "audio/mpeg"
CHUNK_SIZE = 64 * 1024

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


def parse_range(header: str, size: int) -> tuple[int, int]:
    """Resolve ``bytes=start-end`` against a file of ``size`` bytes.

    A missing end means "to the end of the file"; ``bytes=-N`` asks for the
    last N bytes. The end is clamped to the last byte.
    """
    match = _RANGE_RE.match(header)
    if not match:
        raise RangeNotSatisfiable(header, size)
    first, last = match.groups()
    if not first and not last:
        raise RangeNotSatisfiable(header, size)
    if not first:
        suffix = int(last)
        if suffix == 0:
            raise RangeNotSatisfiable(header, size)
        return max(size - suffix, 0), size - 1
    start = int(first)
    end = int(last) if last else size - 1
    end = min(end, size - 1)
    if start >= size or start > end:
        raise RangeNotSatisfiable(header, size)
    return start, end


@dataclass(frozen=True)
class AudioWindow:
    path: Path
    start: int
    end: int
    size: int
    status: int
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class ImagePayload:
    content_type: str
    body: bytes


class AudioStreamer:
    """Serves item audio and artwork straight from the cached records."""

    def __init__(self, cache: ItemCache, *, chunk_size: int = CHUNK_SIZE) -> None:
        self.cache = cache
        self.chunk_size = chunk_size

    async def open_audio(self, item_id: str, range_header: Optional[str] = None) -> AudioWindow:
        item = await self.cache.get(item_id)
        if item is None:
            raise NotFound(item_id)
        size = item.size_bytes
        if not range_header:
            return AudioWindow(
                path=item.file_path,
                start=0,
                end=size - 1,
                size=size,
                status=200,
                headers={"Content-Length": str(size), "Content-Type": AUDIO_CONTENT_TYPE},
            )
        start, end = parse_range(range_header, size)
        return AudioWindow(
            path=item.file_path,
            start=start,
            end=end,
            size=size,
            status=206,
            headers={
                "Content-Range": f"bytes {start}-{end}/{size}",
                "Accept-Ranges": "bytes",
                "Content-Length": str(end - start + 1),
                "Content-Type": AUDIO_CONTENT_TYPE,
            },
        )

    async def iter_window(self, window: AudioWindow) -> AsyncIterator[bytes]:
        remaining = window.length
        try:
            async with aiofiles.open(window.path, "rb") as fh:
                await fh.seek(window.start)
                while remaining > 0:
                    chunk = await fh.read(min(self.chunk_size, remaining))
                    if not chunk:
                        break
                    remaining -= len(chunk)
                    yield chunk
        except OSError:
            # Headers are already out; stop here rather than send bytes we can't vouch for.
            logger.exception("Read failed for %s with %d bytes left", window.path, remaining)

    async def open_image(self, item_id: str) -> ImagePayload:
        item = await self.cache.get(item_id)
        if item is None or item.picture is None:
            raise NotFound(item_id)
        return ImagePayload(content_type=item.picture.format, body=item.picture.data)
