"""
Tests for CLI entry points.

These tests use a temporary store file to avoid touching real user data.
"""

import asyncio
import io
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

from duewatch.cli import _parse_cookies, main
from duewatch.model import Record
from duewatch.storage import JsonFileStore, save_records


class TestCLI(unittest.TestCase):
    def run_cli(self, argv: list) -> tuple:
        out = io.StringIO()
        with redirect_stdout(out):
            with self.assertRaises(SystemExit) as ctx:
                main(argv)
        return ctx.exception.code, out.getvalue()

    def test_command_is_required(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            main([])
        self.assertNotEqual(ctx.exception.code, 0)

    def test_list_empty_store(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            code, out = self.run_cli(["--store", str(Path(d) / "store.json"), "list"])
        self.assertEqual(code, 0)
        self.assertIn("No assignments stored.", out)

    def test_list_and_done_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "store.json"
            asyncio.run(save_records(JsonFileStore(p), [Record(id="a_1", title="Lab 3", course="CS101")]))

            code, out = self.run_cli(["--store", str(p), "list"])
            self.assertEqual(code, 0)
            self.assertIn("a_1 | no date | Lab 3 [CS101]", out)

            code, out = self.run_cli(["--store", str(p), "done", "a_1"])
            self.assertEqual(code, 0)
            self.assertIn("Marked done: a_1", out)

            code, out = self.run_cli(["--store", str(p), "done", "a_1"])
            self.assertEqual(code, 0)
            self.assertIn("Not found: a_1", out)

    def test_done_requires_id(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            code, _ = self.run_cli(["--store", str(Path(d) / "store.json"), "done", " "])
        self.assertEqual(code, 1)

    def test_sync_rejects_bad_cookie(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            code, out = self.run_cli(["--store", str(Path(d) / "store.json"), "sync", "--cookie", "nonsense"])
        self.assertEqual(code, 1)
        self.assertIn("Invalid cookie", out)

    def test_parse_cookies(self) -> None:
        self.assertEqual(_parse_cookies(["PHPSESSID=abc", " lang = en "]), {"PHPSESSID": "abc", "lang": "en"})


if __name__ == "__main__":
    unittest.main()
