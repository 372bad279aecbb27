import unittest
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path

from audio_feed.config import ChannelImage, ChannelSettings
from audio_feed.feed import CData, FeedBuilder, FeedRequest, ResourceUrls, image_override, rfc2822, serialize
from audio_feed.models import InvalidQuery, Item, Picture

BUILT = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
ITUNES = "{http://www.itunes.com/dtds/podcast-1.0.dtd}"


def make_item(item_id: str = "abc123", **overrides) -> Item:
    values = dict(
        id=item_id,
        title="The Book",
        author="Jane Author",
        description="<b>Great</b> & long",
        copyright="Unknown",
        published_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        size_bytes=1000,
        file_path=Path("/library/book.mp3"),
        categories=["Fiction", "Fantasy"],
        duration_seconds=3599.6,
        picture=Picture(format="image/jpeg", data=b"jpg"),
    )
    values.update(overrides)
    return Item(**values)


class TestResourceUrls(unittest.TestCase):
    def test_builds_from_mount_path(self) -> None:
        urls = ResourceUrls(scheme="https", host="example.com:8443", mount_path="/audiobook")
        self.assertEqual(urls.url(), "https://example.com:8443/audiobook/")
        self.assertEqual(urls.url("/feed.xml"), "https://example.com:8443/audiobook/feed.xml")
        self.assertEqual(urls.audio("x1"), "https://example.com:8443/audiobook/resource/x1/audio.mp3")
        self.assertEqual(urls.image("x1"), "https://example.com:8443/audiobook/resource/x1/image")

    def test_root_mount(self) -> None:
        urls = ResourceUrls(scheme="http", host="localhost", mount_path="/")
        self.assertEqual(urls.url("feed.xml"), "http://localhost/feed.xml")


class TestFeedBuilder(unittest.TestCase):
    def setUp(self) -> None:
        self.channel = ChannelSettings(
            title="All the books",
            description="All fixtures",
            image=ChannelImage(url="https://example.com/art.png", title="Art"),
            author="Family",
        )
        self.urls = ResourceUrls(scheme="http", host="localhost:8765", mount_path="/audiobook")
        self.builder = FeedBuilder(self.channel, clock=lambda: BUILT)

    def test_channel_fields(self) -> None:
        tree = self.builder.build([], self.urls)
        rss = tree["rss"]
        self.assertEqual(rss["@version"], "2.0")
        self.assertIn("@xmlns:itunes", rss)
        channel = rss["channel"]
        self.assertEqual(channel["title"], "All the books")
        self.assertEqual(channel["link"], "http://localhost:8765/audiobook/")
        self.assertEqual(channel["description"], "All fixtures")
        self.assertIsInstance(channel["description"], CData)
        self.assertEqual(channel["lastBuildDate"], "Tue, 02 Jan 2024 03:04:05 GMT")
        self.assertEqual(channel["atom:link"][0]["@href"], "http://localhost:8765/audiobook/feed.xml")
        self.assertEqual(channel["image"], {"url": "https://example.com/art.png", "title": "Art"})
        self.assertEqual(channel["itunes:author"], "Family")
        self.assertNotIn("itunes:summary", channel)
        self.assertEqual(channel["item"], [])

    def test_request_overrides(self) -> None:
        override = ChannelImage(url="https://cdn.example.com/other.png", width=300)
        request = FeedRequest(title="Only fiction", image=override, query_string="filterIn=genre%3AFiction")
        channel = self.builder.build([], self.urls, request)["rss"]["channel"]
        self.assertEqual(channel["title"], "Only fiction")
        self.assertEqual(channel["image"], {"url": "https://cdn.example.com/other.png", "width": 300})
        self.assertEqual(
            channel["description"],
            "<p>All fixtures</p>\n\n<p>query: filterIn=genre%3AFiction</p>",
        )

    def test_item_mapping(self) -> None:
        entry = self.builder.build([make_item()], self.urls)["rss"]["channel"]["item"][0]
        self.assertEqual(entry["guid"], {"@isPermaLink": "false", "#text": "abc123"})
        self.assertEqual(entry["title"], "The Book")
        self.assertIsInstance(entry["description"], CData)
        self.assertEqual(entry["content:encoded"], "<b>Great</b> & long")
        self.assertEqual(entry["pubDate"], "Wed, 01 Jan 2020 00:00:00 GMT")
        self.assertEqual(entry["category"], ["Fiction", "Fantasy"])
        self.assertEqual(
            entry["enclosure"],
            {
                "@length": "1000",
                "@type": "audio/mpeg",
                "@url": "http://localhost:8765/audiobook/resource/abc123/audio.mp3",
            },
        )
        self.assertEqual(entry["itunes:duration"], "3600")
        self.assertEqual(entry["itunes:image"], {"@href": "http://localhost:8765/audiobook/resource/abc123/image"})
        self.assertEqual(entry["itunes:explicit"], "no")
        self.assertEqual(entry["itunes:episodeType"], "full")
        self.assertNotIn("file_path", entry)

    def test_absent_fields_are_omitted(self) -> None:
        item = make_item(categories=[], duration_seconds=None, picture=None)
        entry = self.builder.build([item], self.urls)["rss"]["channel"]["item"][0]
        self.assertNotIn("category", entry)
        self.assertNotIn("itunes:duration", entry)
        self.assertNotIn("itunes:image", entry)

    def test_items_keep_given_order(self) -> None:
        items = [make_item("second"), make_item("first")]
        entries = self.builder.build(items, self.urls)["rss"]["channel"]["item"]
        self.assertEqual([entry["guid"]["#text"] for entry in entries], ["second", "first"])

    def test_modify_hook_runs_before_serialization(self) -> None:
        def add_summary(tree):
            tree["rss"]["channel"]["itunes:summary"] = "Hooked"
            return tree

        builder = FeedBuilder(self.channel, modify=add_summary, clock=lambda: BUILT)
        xml = builder.render([make_item()], self.urls)
        root = ET.fromstring(xml.encode("utf-8"))
        self.assertEqual(root.find("channel").find(f"{ITUNES}summary").text, "Hooked")

    def test_render_produces_well_formed_rss(self) -> None:
        xml = self.builder.render([make_item("a"), make_item("b")], self.urls)
        self.assertTrue(xml.startswith("<?xml"))
        root = ET.fromstring(xml.encode("utf-8"))
        self.assertEqual(root.tag, "rss")
        items = root.find("channel").findall("item")
        self.assertEqual(len(items), 2)
        self.assertEqual(items[0].find("description").text, "<b>Great</b> & long")
        self.assertEqual(items[0].find("enclosure").get("length"), "1000")
        self.assertEqual(items[1].find(f"{ITUNES}title").text, "The Book")

    def test_descriptions_are_written_as_cdata_sections(self) -> None:
        xml = self.builder.render([make_item()], self.urls)
        self.assertIn("<description><![CDATA[<b>Great</b> & long]]></description>", xml)
        self.assertIn("<content:encoded><![CDATA[<b>Great</b> & long]]></content:encoded>", xml)
        self.assertIn("<description><![CDATA[All fixtures]]></description>", xml)
        self.assertIn("<title>The Book</title>", xml)

    def test_non_finite_duration_is_omitted(self) -> None:
        items = [make_item("a", duration_seconds=float("nan")), make_item("b", duration_seconds=float("inf"))]
        xml = self.builder.render(items, self.urls)
        root = ET.fromstring(xml.encode("utf-8"))
        for entry in root.find("channel").findall("item"):
            self.assertIsNone(entry.find(f"{ITUNES}duration"))


class TestHelpers(unittest.TestCase):
    def test_image_override_requires_url(self) -> None:
        self.assertIsNone(image_override({"image.title": "ignored"}))
        image = image_override({"image.url": "https://x/y.png", "image.height": "144", "image.link": "https://x"})
        self.assertEqual(image.height, 144)
        self.assertEqual(image.link, "https://x")
        self.assertIsNone(image.width)

    def test_image_override_rejects_bad_numbers(self) -> None:
        with self.assertRaises(InvalidQuery):
            image_override({"image.url": "https://x/y.png", "image.width": "wide"})

    def test_rfc2822_treats_naive_as_utc(self) -> None:
        self.assertEqual(rfc2822(datetime(2021, 7, 4, 9, 30)), "Sun, 04 Jul 2021 09:30:00 GMT")

    def test_serialize_minimal_tree(self) -> None:
        xml = serialize({"rss": {"@version": "2.0", "channel": {"title": "T"}}})
        root = ET.fromstring(xml.encode("utf-8"))
        self.assertEqual(root.find("channel/title").text, "T")

    def test_serialize_splits_cdata_terminator(self) -> None:
        xml = serialize({"rss": {"channel": {"description": CData("a ]]> b"), "title": "cdata-0"}}})
        self.assertIn("<![CDATA[a ]]]]><![CDATA[> b]]>", xml)
        root = ET.fromstring(xml.encode("utf-8"))
        self.assertEqual(root.find("channel/description").text, "a ]]> b")
        self.assertEqual(root.find("channel/title").text, "cdata-0")


if __name__ == "__main__":
    unittest.main()
