"""
Tests for Environment lookups and Settings resolution.
"""

from __future__ import annotations

import os
import tempfile
import unittest
from unittest.mock import patch

import config
from config import Environment, Settings


class TestEnvironment(unittest.TestCase):

    def test_get_with_and_without_default(self):
        env = Environment(values={"SESSION_ID": "CAR042"})
        self.assertEqual(env.get("SESSION_ID"), "CAR042")
        self.assertIsNone(env.get("HF_TOKEN"))
        self.assertEqual(env.get("HF_TOKEN", "fallback"), "fallback")

    def test_env_file_is_parsed(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, ".env")
            with open(path, "w") as f:
                f.write("# comment\n\nESP32_DEVICE_NAME=Probe\nHF_TOKEN = hf_file \nEMPTY\n")
            with patch.dict(os.environ, {}, clear=True):
                env = Environment(env_file=path)

        self.assertEqual(env.get("ESP32_DEVICE_NAME"), "Probe")
        self.assertEqual(env.get("HF_TOKEN"), "hf_file")
        self.assertIsNone(env.get("EMPTY"))

    def test_process_environment_overrides_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, ".env")
            with open(path, "w") as f:
                f.write("SESSION_ID=FROM_FILE\n")
            with patch.dict(os.environ, {"SESSION_ID": "FROM_ENV"}, clear=True):
                env = Environment(env_file=path)
        self.assertEqual(env.get("SESSION_ID"), "FROM_ENV")

    def test_missing_env_file_is_fine(self):
        with patch.dict(os.environ, {}, clear=True):
            env = Environment(env_file="/nonexistent/.env")
        self.assertIsNone(env.get("SESSION_ID"))

    def test_numeric_parsing_falls_back(self):
        env = Environment(values={"UPLOAD_INTERVAL": "fast", "GPSD_PORT": "2948"})
        with self.assertLogs("config", level="WARNING"):
            self.assertEqual(env.get_float("UPLOAD_INTERVAL", 2.0), 2.0)
        self.assertEqual(env.get_int("GPSD_PORT", 2947), 2948)


class TestSettings(unittest.TestCase):

    def test_defaults(self):
        settings = Settings.from_environment(Environment(values={}))
        self.assertEqual(settings.service_uuid, config.DEFAULT_SERVICE_UUID)
        self.assertEqual(settings.notify_uuid, "00000002-710e-4a5b-8d75-3e5b444b3c3f")
        self.assertEqual(settings.write_uuid, "00000003-710e-4a5b-8d75-3e5b444b3c3f")
        self.assertEqual(settings.control_uuid, "00000004-710e-4a5b-8d75-3e5b444b3c3f")
        self.assertEqual(settings.device_name, "Thermometer")
        self.assertEqual(settings.session_id, "CAR001")
        self.assertEqual(settings.upload_interval, 2.0)
        self.assertEqual(settings.min_distance_change, 5.0)
        self.assertEqual(settings.upload_url, "https://awesomesauce10-pothole.hf.space/upload")

    def test_overrides(self):
        settings = Settings.from_environment(Environment(values={
            "ESP32_DEVICE_NAME": "Probe",
            "HF_SPACE_URL": "http://localhost:7860/",
            "UPLOAD_INTERVAL": "10",
            "MIN_DISTANCE_CHANGE": "2.5",
            "LOG_LEVEL": "debug",
        }))
        self.assertEqual(settings.device_name, "Probe")
        self.assertEqual(settings.upload_url, "http://localhost:7860/upload")
        self.assertEqual(settings.upload_interval, 10.0)
        self.assertEqual(settings.min_distance_change, 2.5)
        self.assertEqual(settings.log_level, "DEBUG")
