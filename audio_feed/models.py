from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional


@dataclass(frozen=True, slots=True)
class Picture:
    format: str
    data: bytes


@dataclass(frozen=True, slots=True)
class Narrator:
    name: str


@dataclass(slots=True)
class Item:
    id: str
    title: str
    author: str
    description: str
    copyright: str
    published_at: datetime
    size_bytes: int
    file_path: Path
    mime_type: str = "audio/mpeg"
    categories: List[str] = field(default_factory=list)
    narrators: List[Narrator] = field(default_factory=list)
    duration_seconds: Optional[float] = None
    picture: Optional[Picture] = None

    @property
    def guid(self) -> str:
        return self.id

    @property
    def content(self) -> str:
        return self.description

    def to_record(self) -> Dict[str, object]:
        """Client-safe view of the item; never carries the file path or image bytes."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "copyright": self.copyright,
            "pubDate": self.published_at.isoformat(),
            "category": list(self.categories),
            "contributor": [{"name": narrator.name} for narrator in self.narrators],
            "duration": self.duration_seconds,
            "size": self.size_bytes,
            "type": self.mime_type,
            "hasPicture": self.picture is not None,
        }


class FeedError(Exception):
    """Base class for failures the feed engine reports to its callers."""


class FileUnavailable(FeedError):
    def __init__(self, path: Path, cause: BaseException) -> None:
        super().__init__(f"Cannot read {path}: {cause}")
        self.path = path
        self.cause = cause


class UnparsableMetadata(FeedError):
    def __init__(self, path: Path, cause: BaseException) -> None:
        super().__init__(f"Could not parse the metadata for {path}: {cause}")
        self.path = path
        self.cause = cause


class InvalidQuery(FeedError):
    """Raised for malformed filter, sort or scope parameters."""


class NotFound(FeedError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"No item with id {item_id!r}")
        self.item_id = item_id


class EmbeddedPayloadCorrupt(FeedError):
    """The embedded json64 blob could not be decoded. Never leaves the extractor."""


class RangeNotSatisfiable(FeedError):
    def __init__(self, header: str, size: int) -> None:
        super().__init__(f"Range {header!r} cannot be served from {size} bytes")
        self.header = header
        self.size = size
