"""
Unit tests for configuration and reminder offset keys.
"""

import unittest
from datetime import timedelta

from duewatch.config import DEFAULT_OFFSET_KEYS, Settings, parse_offset_key, resolve_offsets


class TestOffsets(unittest.TestCase):
    def test_parse_known_forms(self) -> None:
        self.assertEqual(parse_offset_key("reminder_today").duration, timedelta(0))
        self.assertEqual(parse_offset_key("reminder_3d").duration, timedelta(days=3))
        self.assertEqual(parse_offset_key("reminder_24h").duration, timedelta(hours=24))
        self.assertEqual(parse_offset_key("reminder_30m").duration, timedelta(minutes=30))

    def test_unknown_key_rejected(self) -> None:
        for bad in ("reminder_", "reminder_3w", "3d", ""):
            with self.assertRaises(ValueError):
                parse_offset_key(bad)

    def test_resolve_defaults_and_dedup(self) -> None:
        self.assertEqual([o.key for o in resolve_offsets(None)], DEFAULT_OFFSET_KEYS)
        keys = [o.key for o in resolve_offsets(["reminder_1h", "reminder_6h", "reminder_1h"])]
        self.assertEqual(keys, ["reminder_1h", "reminder_6h"])


class TestSettings(unittest.TestCase):
    def test_defaults(self) -> None:
        s = Settings()
        self.assertEqual(s.segment_param, "oc")
        self.assertEqual(s.scrape_timeout, 2.5)
        self.assertEqual(s.sweep_interval, 3 * 60 * 60)

    def test_override(self) -> None:
        s = Settings(scrape_timeout=5.0, listing_url="https://lms.example.edu/a.php")
        self.assertEqual(s.scrape_timeout, 5.0)
        self.assertEqual(s.listing_url, "https://lms.example.edu/a.php")


if __name__ == "__main__":
    unittest.main()
