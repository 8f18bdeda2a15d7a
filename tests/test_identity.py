"""
Unit tests for record identity.

Identity contract:
- id depends only on normalized title + normalized raw deadline
- the course never changes the id
- reminder names split into exactly two parts, anything else is rejected
"""

import re
import unittest

from duewatch.identity import normalize, record_id, reminder_name, split_reminder_name
from duewatch.model import Record


class TestIdentity(unittest.TestCase):
    def test_normalize_trims_and_lowercases(self) -> None:
        self.assertEqual(normalize("  Lab 3 "), "lab 3")
        self.assertEqual(normalize(None), "")

    def test_course_does_not_change_id(self) -> None:
        a = Record(title="Lab 3", course="CS101", deadline_raw="17 October 2025 12:00 pm")
        b = Record(title="Lab 3", course="CS102 Data Structures", deadline_raw="17 October 2025 12:00 pm")
        self.assertEqual(record_id(a), record_id(b))

    def test_normalized_fields_give_same_id(self) -> None:
        a = Record(title="  LAB 3", deadline_raw="17 October 2025 12:00 PM ")
        b = Record(title="lab 3", deadline_raw="17 october 2025 12:00 pm")
        self.assertEqual(record_id(a), record_id(b))

    def test_different_deadline_gives_different_id(self) -> None:
        a = Record(title="Lab 3", deadline_raw="17 October 2025 12:00 pm")
        b = Record(title="Lab 3", deadline_raw="24 October 2025 12:00 pm")
        self.assertNotEqual(record_id(a), record_id(b))

    def test_id_is_stable_token(self) -> None:
        rec = Record(title="Quiz 1", deadline_raw="1 March 2026")
        rid = record_id(rec)
        self.assertRegex(rid, re.compile(r"^a_\d+$"))
        self.assertEqual(rid, record_id(Record(title="Quiz 1", deadline_raw="1 March 2026")))

    def test_reminder_name_roundtrip(self) -> None:
        name = reminder_name("a_42", "reminder_3d")
        self.assertEqual(name, "a_42::reminder_3d")
        self.assertEqual(split_reminder_name(name), ("a_42", "reminder_3d"))

    def test_malformed_reminder_names_are_rejected(self) -> None:
        for bad in ("a_42", "a_42::x::y", "::reminder_3d", "a_42::", ""):
            with self.assertRaises(ValueError):
                split_reminder_name(bad)


if __name__ == "__main__":
    unittest.main()
