import unittest
from datetime import datetime, timezone
from pathlib import Path

from audio_feed.models import Item, Narrator, Picture


class TestItemRecord(unittest.TestCase):
    def test_record_is_client_safe(self) -> None:
        item = Item(
            id="abc",
            title="The Book",
            author="Jane Author",
            description="Long",
            copyright="Unknown",
            published_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
            size_bytes=1000,
            file_path=Path("/library/secret/book.mp3"),
            categories=["Fiction"],
            narrators=[Narrator("Ann")],
            duration_seconds=61.5,
            picture=Picture(format="image/jpeg", data=b"\xff\xd8jpeg"),
        )
        record = item.to_record()
        self.assertEqual(record["id"], "abc")
        self.assertEqual(record["pubDate"], "2020-01-01T00:00:00+00:00")
        self.assertEqual(record["category"], ["Fiction"])
        self.assertEqual(record["contributor"], [{"name": "Ann"}])
        self.assertEqual(record["duration"], 61.5)
        self.assertEqual(record["size"], 1000)
        self.assertEqual(record["type"], "audio/mpeg")
        self.assertTrue(record["hasPicture"])
        self.assertNotIn("file_path", record)
        self.assertNotIn("path", record)
        self.assertNotIn("picture", record)
        for value in record.values():
            self.assertNotIsInstance(value, (bytes, Path))
            self.assertNotIn("/library/secret", str(value))


if __name__ == "__main__":
    unittest.main()
