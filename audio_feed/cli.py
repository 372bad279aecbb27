from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from .config import Settings, find_config
from .library import ItemCache
from .server import serve

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ShortPathFormatter(logging.Formatter):
    def __init__(self, fmt: str, roots: list[Path]) -> None:
        super().__init__(fmt)
        self.roots = [str(root) for root in roots if root]

    def _shorten(self, message: str) -> str:
        for root in self.roots:
            if not message:
                break
            message = message.replace(f"{root}/", "")
            message = message.replace(root, "")
        return message

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return self._shorten(message)


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


def configure_logging(level_name: str, roots: list[Path]) -> None:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(handler)
    logging.getLogger("uvicorn.access").setLevel(max(log_level, logging.INFO))


async def _scan(settings: Settings, *, as_json: bool = False, cache: Optional[ItemCache] = None) -> int:
    if cache is None:
        cache = ItemCache(settings)
    try:
        await cache.rebuild()
        items = cache.snapshot()
    finally:
        cache.close()
    for item in sorted(items, key=lambda entry: str(entry.file_path)):
        if as_json:
            print(json.dumps(item.to_record(), ensure_ascii=False))
        else:
            print(f"{item.id}  {item.title}  {item.file_path}")
    return len(items)


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve a directory of audio files as a podcast feed")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("serve", help="Start the feed server")
    scan_parser = subparsers.add_parser("scan", help="Extract metadata once and list the items that would be served")
    scan_parser.add_argument("--json", action="store_true", help="Print one client-safe JSON record per item")
    args = parser.parse_args()

    config_path = find_config(args.config)
    settings = Settings.load(config_path)
    configure_logging(args.log_level, [settings.library.root])

    match args.command:
        case "serve":
            serve(settings)
        case "scan":
            count = asyncio.run(_scan(settings, as_json=args.json))
            if not args.json:
                print(f"\n{count} items")
        case _:
            parser.error("Unknown command")


if __name__ == "__main__":
    main()
