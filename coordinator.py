"""
Tracking session coordinator
Starts and stops the location source, upload scheduler and BLE scan
together and aggregates their state for display.
"""

import logging
from typing import Optional

from ble_device import ConnectionState
from config import Settings
from location_source import GpsdLocationSource
from notification_handler import EventLog
from peripheral_session import Central, PeripheralSession
from upload_service import UploadScheduler

_LOGGER = logging.getLogger(__name__)

SLEEP_COMMAND = "sleep"


class TrackingSession:
    """One tracking session: GPS + uploads + BLE peripheral."""

    def __init__(
        self,
        settings: Settings,
        central: Central,
        location_source=None,
        scheduler: Optional[UploadScheduler] = None,
        event_log: Optional[EventLog] = None,
    ):
        self.settings = settings
        self.event_log = event_log or EventLog()
        self.location_source = location_source or GpsdLocationSource(settings)
        self.scheduler = scheduler or UploadScheduler(settings)
        self.peripheral = PeripheralSession(settings, central, self.event_log)

    @property
    def is_tracking(self) -> bool:
        return self.location_source.is_tracking

    def _log(self, message: str):
        _LOGGER.info("[SESSION] %s", message)
        self.event_log.add(message)

    def start_tracking(self):
        self.location_source.start_tracking()
        self.scheduler.start(self.location_source)
        self.peripheral.start_scan()
        self._log("Started GPS tracking and BLE scanning")

    def stop_tracking(self):
        """Stop location, uploads, scan, then drop the link; each step runs regardless of the others."""
        steps = (
            ("location updates", self.location_source.stop_tracking),
            ("upload timer", self.scheduler.stop),
            ("BLE scan", self.peripheral.stop_scan),
            ("BLE connection", self._disconnect_if_connected),
        )
        for name, step in steps:
            try:
                step()
            except Exception:
                _LOGGER.exception("[SESSION] Failed to stop %s", name)
        self._log("Stopped GPS tracking and BLE connection")

    def _disconnect_if_connected(self):
        if self.peripheral.state.is_connected:
            self.peripheral.disconnect()

    def send_message(self, message: str) -> bool:
        return self.peripheral.send(message)

    def send_sleep(self) -> bool:
        sent = self.peripheral.send_control(SLEEP_COMMAND)
        if sent:
            self._log(f"Sent {SLEEP_COMMAND} command to {self.peripheral.target_name}")
        return sent

    def subscribe(self, callback):
        """Receive every new log line. Returns an unsubscribe function."""
        return self.event_log.subscribe(callback)

    def clear_logs(self):
        self.event_log.clear()

    def status(self) -> dict:
        fix = self.location_source.location
        location = None
        if fix is not None:
            location = {
                "latitude": round(fix.latitude, 6),
                "longitude": round(fix.longitude, 6),
                "accuracy": fix.horizontal_accuracy,
                "speed_kmh": round(fix.speed_kmh, 1),
                "timestamp": fix.timestamp.isoformat() if fix.timestamp else None,
            }

        return {
            "tracking": self.is_tracking,
            "authorization": self.location_source.authorization_status.value,
            "session_id": self.settings.session_id,
            "location": location,
            "upload": self.scheduler.status(),
            "ble": self.peripheral.state.as_dict(),
            "can_sleep": self.peripheral.state.connection_state == ConnectionState.CONNECTED,
        }
