from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class LibrarySettings(BaseModel):
    root: Path
    include_extensions: List[str] = Field(default_factory=lambda: [".mp3"])
    exclude_patterns: List[str] = Field(default_factory=list)

    @field_validator("root", mode="before")
    @classmethod
    def _expand_root(cls, value: str | Path) -> Path:
        return Path(value).expanduser().resolve()


class ChannelImage(BaseModel):
    url: str
    link: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    height: Optional[int] = None
    width: Optional[int] = None


class ChannelSettings(BaseModel):
    title: str
    description: str
    image: Optional[ChannelImage] = None
    author: Optional[str] = None
    summary: Optional[str] = None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8765
    mount_path: str = "/audiobook"
    expose_tracebacks: bool = False

    @field_validator("mount_path", mode="before")
    @classmethod
    def _normalize_mount(cls, value: str) -> str:
        cleaned = "/" + str(value or "").strip("/")
        return cleaned


class CacheSettings(BaseModel):
    worker_concurrency: int = Field(default=4, ge=1)


class Settings(BaseModel):
    library: LibrarySettings
    channel: ChannelSettings
    server: ServerSettings = ServerSettings()
    cache: CacheSettings = CacheSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw)


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml - pass --config explicitly.")
