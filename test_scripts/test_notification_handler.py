"""
Tests for payload decoding and the bounded event log.
"""

from __future__ import annotations

import re
import unittest

from notification_handler import MAX_LOG_ENTRIES, EventLog, decode_payload


class TestDecodePayload(unittest.TestCase):

    def test_utf8_text(self):
        self.assertEqual(decode_payload(bytearray("Temp:21.5°C".encode("utf-8"))), "Temp:21.5°C")

    def test_empty_payload(self):
        self.assertEqual(decode_payload(b""), "")

    def test_binary_payload_dropped(self):
        self.assertIsNone(decode_payload(b"\x80\x81"))


class TestEventLog(unittest.TestCase):

    def test_lines_are_timestamped(self):
        log = EventLog()
        line = log.add("Connected")
        self.assertRegex(line, r"^\[\d{2}:\d{2}:\d{2}\] Connected$")
        self.assertEqual(log.entries, [line])

    def test_bounded_to_most_recent(self):
        log = EventLog()
        for i in range(MAX_LOG_ENTRIES + 5):
            log.add(f"line {i}")
        self.assertEqual(len(log.entries), MAX_LOG_ENTRIES)
        self.assertTrue(log.entries[0].endswith("line 5"))
        self.assertTrue(log.entries[-1].endswith(f"line {MAX_LOG_ENTRIES + 4}"))

    def test_recent_and_clear(self):
        log = EventLog()
        for i in range(15):
            log.add(str(i))
        recent = log.recent(3)
        self.assertEqual([re.sub(r"^\[.*?\] ", "", r) for r in recent], ["12", "13", "14"])
        log.clear()
        self.assertEqual(log.recent(), [])

    def test_non_positive_limit_returns_nothing(self):
        log = EventLog()
        for i in range(5):
            log.add(str(i))
        self.assertEqual(log.recent(0), [])
        self.assertEqual(log.recent(-2), [])
        self.assertEqual(len(log.recent(50)), 5)

    def test_subscribers_and_failures(self):
        log = EventLog()
        received = []

        def broken(line):
            raise ValueError("display gone")

        log.subscribe(broken)
        log.subscribe(received.append)
        with self.assertLogs("notification_handler", level="ERROR"):
            log.add("hello")
        self.assertEqual(len(received), 1)
