from __future__ import annotations

import logging
import math
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlunsplit

import xmltodict

from .config import ChannelImage, ChannelSettings
from .models import InvalidQuery, Item

logger = logging.getLogger(__name__)

NAMESPACES = {
    "@xmlns:atom": "http://www.w3.org/2005/Atom",
    "@xmlns:content": "http://purl.org/rss/1.0/modules/content/",
    "@xmlns:googleplay": "http://www.google.com/schemas/play-podcasts/1.0",
    "@xmlns:itunes": "http://www.itunes.com/dtds/podcast-1.0.dtd",
}
HUB_URL = "https://pubsubhubbub.appspot.com/"

Tree = Dict[str, Any]


class CData(str):
    """Marks text that `serialize` writes as a character-data section (HTML descriptions)."""


@dataclass(frozen=True)
class ResourceUrls:
    """Rebuilds absolute URLs from the inbound request's scheme, host and mount path."""

    scheme: str
    host: str
    mount_path: str = "/"

    def url(self, segment: str = "") -> str:
        base = self.mount_path if self.mount_path.endswith("/") else f"{self.mount_path}/"
        if not base.startswith("/"):
            base = f"/{base}"
        return urlunsplit((self.scheme, self.host, base + segment.lstrip("/"), "", ""))

    def audio(self, item_id: str) -> str:
        return self.url(f"resource/{item_id}/audio.mp3")

    def image(self, item_id: str) -> str:
        return self.url(f"resource/{item_id}/image")


@dataclass(frozen=True)
class FeedRequest:
    title: Optional[str] = None
    image: Optional[ChannelImage] = None
    query_string: str = ""


def image_override(params: Mapping[str, str]) -> Optional[ChannelImage]:
    url = params.get("image.url")
    if not url:
        return None
    return ChannelImage(
        url=url,
        link=params.get("image.link"),
        title=params.get("image.title"),
        description=params.get("image.description"),
        height=_optional_int(params.get("image.height"), "image.height"),
        width=_optional_int(params.get("image.width"), "image.width"),
    )


def _optional_int(value: Optional[str], name: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        raise InvalidQuery(f"{name} must be a whole number, got {value!r}") from None


def remove_empty(mapping: Mapping[str, Any]) -> Tree:
    return {key: value for key, value in mapping.items() if value is not None}


def rfc2822(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def cdata_section(text: str) -> str:
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def serialize(tree: Tree) -> str:
    # xmltodict escapes every text node, so CData values travel as opaque
    # tokens and are swapped for real sections after unparsing.
    sections: List[str] = []
    marker = f"cdata-{uuid.uuid4().hex}-"

    def mark(node: Any) -> Any:
        if isinstance(node, CData):
            sections.append(str(node))
            return f"{marker}{len(sections) - 1}"
        if isinstance(node, dict):
            return {key: mark(value) for key, value in node.items()}
        if isinstance(node, list):
            return [mark(value) for value in node]
        return node

    text = xmltodict.unparse(mark(tree), pretty=True, indent="  ")
    if not sections:
        return text
    return re.sub(re.escape(marker) + r"(\d+)", lambda match: cdata_section(sections[int(match.group(1))]), text)


class FeedBuilder:
    def __init__(
        self,
        channel: ChannelSettings,
        *,
        modify: Optional[Callable[[Tree], Tree]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.channel = channel
        self.modify = modify or (lambda tree: tree)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def render(self, items: Sequence[Item], urls: ResourceUrls, request: Optional[FeedRequest] = None) -> str:
        tree = self.modify(self.build(items, urls, request))
        logger.debug("Rendering feed with %d items", len(items))
        return serialize(tree)

    def build(self, items: Sequence[Item], urls: ResourceUrls, request: Optional[FeedRequest] = None) -> Tree:
        request = request or FeedRequest()
        image = request.image or self.channel.image
        description = self.channel.description
        if request.query_string:
            description = f"<p>{description}</p>\n\n<p>query: {request.query_string}</p>"
        channel: Tree = {
            "atom:link": [
                {
                    "@href": urls.url("feed.xml"),
                    "@rel": "self",
                    "@title": "MP3 Audio",
                    "@type": "application/rss+xml",
                },
                {"@rel": "hub", "@xmlns": "http://www.w3.org/2005/Atom", "@href": HUB_URL},
            ],
            "title": request.title or self.channel.title,
            "link": urls.url(),
            "description": CData(description),
            "lastBuildDate": rfc2822(self.clock()),
            "image": self._image(image),
            "generator": urls.url(),
            "itunes:author": self.channel.author,
            "itunes:summary": self.channel.summary,
            "item": [self._item(item, urls) for item in items],
        }
        return {"rss": {"@version": "2.0", **NAMESPACES, "channel": remove_empty(channel)}}

    @staticmethod
    def _image(image: Optional[ChannelImage]) -> Optional[Tree]:
        if image is None:
            return None
        return remove_empty(
            {
                "url": image.url,
                "title": image.title,
                "link": image.link,
                "description": image.description,
                "width": image.width,
                "height": image.height,
            }
        )

    @staticmethod
    def _item(item: Item, urls: ResourceUrls) -> Tree:
        duration = None
        if item.duration_seconds is not None and math.isfinite(item.duration_seconds):
            duration = str(int(round(item.duration_seconds)))
        return remove_empty(
            {
                "guid": {"@isPermaLink": "false", "#text": item.guid},
                "title": item.title,
                "description": CData(item.description),
                "pubDate": rfc2822(item.published_at),
                "author": item.author,
                "category": list(item.categories) or None,
                "content:encoded": CData(item.content),
                "enclosure": {
                    "@length": str(item.size_bytes),
                    "@type": item.mime_type,
                    "@url": urls.audio(item.id),
                },
                "itunes:title": item.title,
                "itunes:author": item.author,
                "itunes:duration": duration,
                "itunes:image": {"@href": urls.image(item.id)} if item.picture else None,
                "itunes:summary": item.description,
                "itunes:subtitle": item.description,
                "itunes:explicit": "no",
                "itunes:episodeType": "full",
            }
        )
