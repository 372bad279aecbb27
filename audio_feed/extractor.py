from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import math
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .models import EmbeddedPayloadCorrupt, FileUnavailable, Item, Narrator, UnparsableMetadata
from .tagging import NativeTags, TagReader, TagReadError, find_native_value

logger = logging.getLogger(__name__)

PAYLOAD_IDS = ("TXXX:json64", "json64", "----:com.apple.iTunes:json64")
DESCRIPTION_IDS = ("TXXX:comment", "COMM:comment")
NARRATOR_IDS = ("TXXX:narrated_by",)
GENRE_IDS = ("TXXX:book_genre", "TXXX:genre")
RELEASE_DATE_IDS = ("TXXX:year",)

DEFAULT_TITLE = "Untitled"
DEFAULT_AUTHOR = "Unknown author"
DEFAULT_DESCRIPTION = "No description"
DEFAULT_COPYRIGHT = "Unknown"
DEFAULT_CONTAINER = "mpeg"

_YEAR_RE = re.compile(r"^\d{4}$")
_DATE_FORMATS = ("%d-%b-%Y", "%Y/%m/%d", "%m/%d/%Y")


def item_id_for(path: Path) -> str:
    """Stable id for a file: md5 of its absolute path, independent of its tags."""
    return hashlib.md5(str(path.absolute()).encode("utf-8")).hexdigest()


def decode_embedded_payload(raw: str) -> Dict[str, Any]:
    try:
        decoded = base64.b64decode(raw.strip(), validate=False).decode("utf-8")
        payload = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise EmbeddedPayloadCorrupt(str(exc)) from exc
    if not isinstance(payload, dict):
        raise EmbeddedPayloadCorrupt(f"expected an object, got {type(payload).__name__}")
    return payload


def parse_release_date(value: object) -> Optional[datetime]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    parsed: Optional[datetime] = None
    if _YEAR_RE.match(text):
        try:
            parsed = datetime(int(text), 1, 1)
        except ValueError:
            return None
    else:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def split_categories(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(":") if part.strip()]


def split_narrators(value: Optional[str]) -> List[Narrator]:
    if not value:
        return []
    return [Narrator(name=name.strip()) for name in value.split(",") if name.strip()]


def _text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _number(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class MetadataExtractor:
    """Turns one audio file into an ``Item``.

    Values are layered: the embedded json64 payload wins, then the named
    native tags, then what the container itself reports, then hard defaults.
    """

    def __init__(
        self,
        reader: Optional[TagReader] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.reader = reader or TagReader()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def extract(self, path: Path) -> Item:
        path = path.absolute()
        try:
            stat = path.stat()
        except OSError as exc:
            raise FileUnavailable(path, exc) from exc
        try:
            parsed = self.reader.parse(path)
        except TagReadError as exc:
            raise UnparsableMetadata(path, exc) from exc

        native = parsed.native
        container = parsed.container
        payload = self._embedded_payload(path, native)

        title = _text(payload.get("title")) or container.title or DEFAULT_TITLE
        description = (
            _text(payload.get("summary"))
            or find_native_value(native, *DESCRIPTION_IDS)
            or DEFAULT_DESCRIPTION
        )
        author = _text(payload.get("author")) or container.artist or DEFAULT_AUTHOR
        copyright_ = _text(payload.get("copyright")) or container.copyright or DEFAULT_COPYRIGHT
        duration = _number(payload.get("duration"))
        if duration is None:
            duration = container.duration_seconds
        narrators = _text(payload.get("narrated_by")) or find_native_value(native, *NARRATOR_IDS)
        genre = _text(payload.get("genre")) or find_native_value(native, *GENRE_IDS)
        release_date = _text(payload.get("release_date")) or find_native_value(native, *RELEASE_DATE_IDS)

        return Item(
            id=item_id_for(path),
            title=title,
            author=author,
            description=description,
            copyright=copyright_,
            published_at=parse_release_date(release_date) or self.clock(),
            size_bytes=stat.st_size,
            file_path=path,
            mime_type=f"audio/{container.container or DEFAULT_CONTAINER}",
            categories=split_categories(genre),
            narrators=split_narrators(narrators),
            duration_seconds=duration,
            picture=container.picture,
        )

    def _embedded_payload(self, path: Path, native: List[NativeTags]) -> Dict[str, Any]:
        raw = find_native_value(native, *PAYLOAD_IDS)
        if not raw:
            return {}
        try:
            return decode_embedded_payload(raw)
        except EmbeddedPayloadCorrupt as exc:
            # Audible exports sometimes truncate the blob; treat it as absent.
            logger.debug("Ignoring corrupt json64 payload in %s: %s", path, exc)
            return {}
