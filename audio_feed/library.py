from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional

from .config import Settings
from .extractor import MetadataExtractor
from .models import FeedError, Item
from .scanner import LibraryScanner

logger = logging.getLogger(__name__)


class ItemCache:
    """In-memory map of item id -> Item, rebuilt wholesale from the library root.

    Each rebuild produces a fresh dict that replaces the previous one in a
    single assignment, so readers see either the old generation or the new
    one. Concurrent rebuilds are not serialised; the last one to finish wins.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        scanner: Optional[LibraryScanner] = None,
        extractor: Optional[MetadataExtractor] = None,
    ) -> None:
        self.settings = settings
        self.scanner = scanner or LibraryScanner(settings.library)
        self.extractor = extractor or MetadataExtractor()
        self._executor = ThreadPoolExecutor(
            max_workers=settings.cache.worker_concurrency,
            thread_name_prefix="audio-feed-extract",
        )
        self._items: Dict[str, Item] = {}
        self.generation = 0

    @property
    def root(self) -> Path:
        return self.scanner.root

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    async def rebuild(self) -> None:
        loop = asyncio.get_running_loop()
        files = await loop.run_in_executor(self._executor, self._list_files)
        logger.debug("Rebuilding item cache from %d files under %s", len(files), self.root)
        results = await asyncio.gather(*(self._extract(loop, path) for path in files))
        items: Dict[str, Item] = {}
        for item in results:
            if item is None or not item.id:
                continue
            if item.id in items:
                logger.warning("Duplicate item id %s for %s; keeping %s", item.id, item.file_path, items[item.id].file_path)
                continue
            items[item.id] = item
        self._items = items
        self.generation += 1
        logger.info("Cached %d of %d audio files (generation %d)", len(items), len(files), self.generation)

    def _list_files(self) -> List[Path]:
        return list(self.scanner.iter_files())

    async def _extract(self, loop: asyncio.AbstractEventLoop, path: Path) -> Optional[Item]:
        try:
            return await loop.run_in_executor(self._executor, self.extractor.extract, path)
        except FeedError as exc:
            logger.warning("Trouble getting metadata for %s: %s", path, exc)
        except Exception:
            logger.exception("Trouble getting metadata for %s", path)
        return None

    async def get(self, item_id: str) -> Optional[Item]:
        if not self._items:
            await self.rebuild()
        return self._items.get(item_id)

    async def get_all(self) -> List[Item]:
        if not self._items:
            await self.rebuild()
        return list(self._items.values())

    async def bust(self) -> None:
        await self.rebuild()

    def snapshot(self) -> List[Item]:
        """Current generation without triggering a rebuild."""
        return list(self._items.values())
