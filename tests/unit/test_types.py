"""Tests for command-line argument validation."""

import unittest

import typer

from phabtree.types import parse_host, parse_task_id


class TestParseTaskId(unittest.TestCase):
    def test_accepts_plain_and_prefixed_ids(self):
        self.assertEqual(parse_task_id("1234"), "1234")
        self.assertEqual(parse_task_id("T1234"), "1234")

    def test_rejects_non_numeric(self):
        for value in ("Tabc", "D123", "", "12 34", "TT12"):
            with self.subTest(value=value):
                with self.assertRaises(typer.BadParameter):
                    parse_task_id(value)


class TestParseHost(unittest.TestCase):
    def test_strips_trailing_slash(self):
        self.assertEqual(parse_host("https://phab.example.com/"), "https://phab.example.com")

    def test_accepts_localhost_with_port(self):
        self.assertEqual(parse_host("http://localhost:8080"), "http://localhost:8080")

    def test_missing_value_passes_through(self):
        self.assertIsNone(parse_host(None))

    def test_rejects_missing_scheme(self):
        with self.assertRaises(typer.BadParameter):
            parse_host("phab.example.com")


if __name__ == '__main__':
    unittest.main()
