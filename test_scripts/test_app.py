"""
Tests for the Flask control API. The event loop hop is replaced by a
direct call so routes run against an in-memory tracking session.
"""

from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

import app as app_module
from ble_events import CharacteristicsDiscovered, Connected
from coordinator import TrackingSession

from .test_common import (
    CONTROL_UUID,
    SERVICE_UUID,
    WRITE_UUID,
    FakeCentral,
    FakeLocationSource,
    make_settings,
)


def direct_call(func, *args):
    return func(*args)


class TestApi(unittest.TestCase):

    def setUp(self):
        self.central = FakeCentral()
        scheduler = MagicMock()
        scheduler.upload_count = 3
        scheduler.status.return_value = {"is_connected": True, "upload_count": 3, "last_upload_time": None}
        self.tracker = TrackingSession(
            make_settings(), self.central,
            location_source=FakeLocationSource(), scheduler=scheduler,
        )
        patchers = [
            patch.object(app_module, "get_session", return_value=self.tracker),
            patch.object(app_module, "call_on_loop", side_effect=direct_call),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)
        self.client = app_module.app.test_client()

    def _connect(self):
        self.central.emit(Connected(identifier="AA", name="Thermometer"))
        self.central.emit(CharacteristicsDiscovered(
            service_uuid=SERVICE_UUID,
            characteristic_uuids=(WRITE_UUID, CONTROL_UUID),
        ))

    def test_home(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("/session/start", response.get_json()["endpoints"]["session"])

    def test_start_and_stop(self):
        response = self.client.post("/session/start")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["session_id"], "CAR001")
        self.assertTrue(self.tracker.is_tracking)

        self.assertEqual(self.client.post("/session/start").status_code, 409)

        response = self.client.post("/session/stop")
        self.assertEqual(response.get_json(), {"status": "stopped", "uploads": 3})
        self.assertFalse(self.tracker.is_tracking)

    def test_status(self):
        self.client.post("/session/start")
        data = self.client.get("/status").get_json()
        self.assertTrue(data["tracking"])
        self.assertEqual(data["ble"]["connection_state"], "scanning")
        self.assertEqual(data["upload"]["upload_count"], 3)

    def test_send_requires_message(self):
        self.assertEqual(self.client.post("/ble/send", json={}).status_code, 400)

    def test_send_when_disconnected(self):
        response = self.client.post("/ble/send", json={"message": "hi"})
        self.assertEqual(response.status_code, 409)

    def test_send_and_sleep(self):
        self._connect()
        response = self.client.post("/ble/send", json={"message": "hi"})
        self.assertEqual(response.status_code, 200)
        self.assertIn(("write", WRITE_UUID, b"hi"), self.central.calls)

        response = self.client.post("/ble/control")
        self.assertEqual(response.get_json(), {"status": "sent", "command": "sleep"})
        self.assertIn(("write", CONTROL_UUID, b"sleep"), self.central.calls)

    def test_logs(self):
        self.client.post("/session/start")
        data = self.client.get("/logs?limit=1").get_json()
        self.assertEqual(data["count"], 1)
        self.assertTrue(data["logs"][0].endswith("Started GPS tracking and BLE scanning"))

        self.client.delete("/logs")
        self.assertEqual(self.client.get("/logs").get_json()["count"], 0)

    def test_logs_limit_is_clamped(self):
        for i in range(5):
            self.tracker.event_log.add(f"line {i}")
        self.assertEqual(self.client.get("/logs?limit=0").get_json()["count"], 0)
        self.assertEqual(self.client.get("/logs?limit=-3").get_json()["count"], 0)
        self.assertEqual(self.client.get("/logs?limit=100000").get_json()["count"], 5)

    def test_logs_error_becomes_500(self):
        self.tracker.event_log = MagicMock()
        self.tracker.event_log.recent.side_effect = RuntimeError("loop gone")
        with self.assertLogs("app", level="ERROR"):
            response = self.client.get("/logs")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "loop gone"})

    def test_errors_become_500(self):
        self.tracker.status = MagicMock(side_effect=RuntimeError("loop gone"))
        with self.assertLogs("app", level="ERROR"):
            response = self.client.get("/status")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "loop gone"})
