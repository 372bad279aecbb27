from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import mutagen
from mutagen import MutagenError
from mutagen.id3 import ID3
from mutagen.mp4 import MP4Cover

from .models import Picture

logger = logging.getLogger(__name__)

# mutagen file type -> lower-case container name used for the enclosure MIME type
CONTAINERS = {
    "MP3": "mpeg",
    "EasyMP3": "mpeg",
    "MP4": "mp4",
    "EasyMP4": "mp4",
    "FLAC": "flac",
    "OggVorbis": "ogg",
    "OggOpus": "ogg",
    "WAVE": "wav",
    "AIFF": "aiff",
}

BINARY_KEYS = {"covr", "metadata_block_picture"}

TITLE_IDS = ("TIT2", "TITLE", "\xa9nam")
ARTIST_IDS = ("TPE1", "ARTIST", "\xa9ART")
COPYRIGHT_IDS = ("TCOP", "COPYRIGHT", "cprt")


@dataclass(slots=True)
class NativeTags:
    """One tag container (ID3, Vorbis comment, MP4 atoms...) flattened to text entries."""

    format: str
    entries: List[Tuple[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class ContainerInfo:
    container: Optional[str] = None
    title: Optional[str] = None
    artist: Optional[str] = None
    copyright: Optional[str] = None
    duration_seconds: Optional[float] = None
    picture: Optional[Picture] = None


@dataclass(slots=True)
class ParsedTags:
    container: ContainerInfo
    native: List[NativeTags] = field(default_factory=list)


class TagReadError(Exception):
    """Raised when mutagen cannot make sense of a file."""


def find_native_value(containers: Sequence[NativeTags], *ids: str) -> Optional[str]:
    """Return the first entry matching one of ``ids`` (case-insensitive).

    Ids are tried in the order given; for each id every container is searched
    in order, so an earlier id always wins over a later one.
    """
    for native_id in ids:
        wanted = native_id.lower()
        for container in containers:
            for entry_id, value in container.entries:
                if entry_id.lower() == wanted:
                    return value
    return None


class TagReader:
    """Reads tags through mutagen and hands back plain data."""

    def parse(self, path: Path) -> ParsedTags:
        try:
            return self._parse(path)
        except TagReadError:
            raise
        except (MutagenError, OSError) as exc:
            raise TagReadError(str(exc)) from exc
        except Exception as exc:
            # truncated frames surface as struct.error, IndexError and friends
            raise TagReadError(f"{type(exc).__name__}: {exc}") from exc

    def _parse(self, path: Path) -> ParsedTags:
        audio = mutagen.File(str(path))
        if audio is None:
            raise TagReadError(f"Unrecognised audio format: {path.suffix or path.name}")
        if audio.tags is None:
            logger.debug("No tags in %s", path)
        native = self._native_tags(audio.tags)
        info = getattr(audio, "info", None)
        length = getattr(info, "length", None)
        container = ContainerInfo(
            container=CONTAINERS.get(type(audio).__name__),
            title=find_native_value(native, *TITLE_IDS),
            artist=find_native_value(native, *ARTIST_IDS),
            copyright=find_native_value(native, *COPYRIGHT_IDS),
            duration_seconds=float(length) if length else None,
            picture=self._picture(audio),
        )
        return ParsedTags(container=container, native=native)

    def _native_tags(self, tags: Any) -> List[NativeTags]:
        if tags is None:
            return []
        if isinstance(tags, ID3):
            return [NativeTags(format=f"ID3v2.{tags.version[1]}", entries=list(self._id3_entries(tags)))]
        entries: List[Tuple[str, str]] = []
        for key in tags.keys():
            if key.lower() in BINARY_KEYS:
                continue
            text = self._first_text(tags[key])
            if text is not None:
                entries.append((key, text))
        return [NativeTags(format=type(tags).__name__, entries=entries)]

    def _id3_entries(self, tags: ID3) -> Iterable[Tuple[str, str]]:
        for frame in tags.values():
            frame_id = frame.FrameID
            text = self._first_text(getattr(frame, "text", None))
            if text is None:
                continue
            if frame_id == "TXXX":
                yield f"TXXX:{frame.desc}", text
            elif frame_id == "COMM":
                yield f"COMM:{frame.desc or 'comment'}", text
            else:
                yield frame_id, text

    @staticmethod
    def _first_text(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            if not value:
                return None
            value = value[0]
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        text = str(value)
        return text if text else None

    def _picture(self, audio: Any) -> Optional[Picture]:
        tags = audio.tags
        if isinstance(tags, ID3):
            frames = tags.getall("APIC")
            if frames:
                return Picture(format=frames[0].mime, data=bytes(frames[0].data))
        elif tags is not None and "covr" in tags:
            covers = tags["covr"]
            if covers:
                cover = covers[0]
                fmt = "image/png" if getattr(cover, "imageformat", None) == MP4Cover.FORMAT_PNG else "image/jpeg"
                return Picture(format=fmt, data=bytes(cover))
        pictures = getattr(audio, "pictures", None)
        if pictures:
            return Picture(format=pictures[0].mime, data=bytes(pictures[0].data))
        return None
