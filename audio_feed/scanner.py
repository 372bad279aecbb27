from __future__ import annotations

import fnmatch
from collections.abc import Iterator
from pathlib import Path

from .config import LibrarySettings


class LibraryScanner:
    """Walks the library root and yields the audio files the feed should expose."""

    def __init__(self, settings: LibrarySettings) -> None:
        self.settings = settings
        self._exts = {ext.lower() for ext in self.settings.include_extensions}

    @property
    def root(self) -> Path:
        return self.settings.root

    def iter_files(self) -> Iterator[Path]:
        root = self.settings.root
        if not root.exists():
            return
        for file_path in sorted(root.rglob("*")):
            if not file_path.is_file():
                continue
            if not self._should_include(file_path):
                continue
            yield file_path

    def _should_include(self, path: Path) -> bool:
        if path.suffix.lower() not in self._exts:
            return False
        rel = str(path)
        for pattern in self.settings.exclude_patterns:
            if fnmatch.fnmatch(rel, pattern):
                return False
        return True
