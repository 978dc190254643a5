"""
Location source
Streams position fixes from gpsd and keeps only the most recent one.
"""

import asyncio
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from gpsdclient import GPSDClient

from config import Settings

_LOGGER = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000  # Earth radius in meters


class AuthorizationStatus(Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"


@dataclass(frozen=True)
class PositionFix:
    """A single GPS position sample"""
    latitude: float
    longitude: float
    horizontal_accuracy: float = 0.0    # metres, 0 when unknown
    speed: float = 0.0                  # m/s
    timestamp: Optional[datetime] = None

    @property
    def speed_kmh(self) -> float:
        return self.speed * 3.6

    def distance_to(self, other: "PositionFix") -> float:
        return haversine_distance(self.latitude, self.longitude, other.latitude, other.longitude)


def haversine_distance(lat1, lon1, lat2, lon2):
    """Calculate distance between two GPS coordinates in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def fix_from_report(report: dict) -> Optional[PositionFix]:
    """
    Convert a gpsd TPV report into a PositionFix.

    Reports without a 2D/3D fix (mode < 2) or without coordinates give None.
    """
    if report.get("mode", 0) < 2:
        return None
    lat = report.get("lat")
    lon = report.get("lon")
    if lat is None or lon is None:
        return None

    accuracy = report.get("eph")
    if accuracy is None:
        errors = [e for e in (report.get("epx"), report.get("epy")) if e is not None]
        accuracy = max(errors) if errors else 0.0

    timestamp = report.get("time")
    if not isinstance(timestamp, datetime):
        timestamp = datetime.now(timezone.utc)

    return PositionFix(
        latitude=float(lat),
        longitude=float(lon),
        horizontal_accuracy=float(accuracy),
        speed=float(report.get("speed") or 0.0),
        timestamp=timestamp,
    )


class GpsdLocationSource:
    """
    Position fixes from a gpsd daemon.

    The blocking gpsd stream runs in an executor thread; every fix is handed
    back to the owning event loop so `location` is only written there.
    """

    def __init__(self, settings: Settings, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.host = settings.gpsd_host
        self.port = settings.gpsd_port
        self._loop = loop
        self.location: Optional[PositionFix] = None
        self.authorization_status = AuthorizationStatus.NOT_DETERMINED
        self.is_tracking = False
        self._stop: Optional[threading.Event] = None   # Per-run stop flag
        self._reader: Optional[asyncio.Future] = None
        self._listeners: List[Callable[[PositionFix], None]] = []

    def add_listener(self, callback: Callable[[PositionFix], None]):
        self._listeners.append(callback)

    def update_location(self, fix: PositionFix):
        """Record fix as the latest position."""
        self.location = fix
        for callback in list(self._listeners):
            try:
                callback(fix)
            except Exception:
                _LOGGER.exception("[GPS] Location listener failed")

    def _can_connect(self) -> bool:
        with GPSDClient(host=self.host, port=self.port, timeout=5):
            return True

    async def request_permission(self) -> AuthorizationStatus:
        """Check that gpsd accepts connections."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._can_connect)
        except (OSError, ConnectionError) as e:
            _LOGGER.error("[GPS] gpsd at %s:%s unavailable: %s", self.host, self.port, e)
            self.authorization_status = AuthorizationStatus.DENIED
        else:
            self.authorization_status = AuthorizationStatus.AUTHORIZED
        return self.authorization_status

    def start_tracking(self):
        if self.is_tracking:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._stop = threading.Event()
        self.is_tracking = True
        self._reader = loop.run_in_executor(None, self._read_stream, self._stop)
        _LOGGER.info("[GPS] Tracking started (%s:%s)", self.host, self.port)

    def stop_tracking(self):
        if self._stop is not None:
            self._stop.set()
            self._stop = None
        self.is_tracking = False
        self._reader = None
        _LOGGER.info("[GPS] Tracking stopped")

    def _read_stream(self, stop: threading.Event):
        """Worker thread: forward TPV fixes until stop is set."""
        try:
            with GPSDClient(host=self.host, port=self.port, timeout=10) as client:
                self._loop.call_soon_threadsafe(self._set_authorized)
                for report in client.dict_stream(convert_datetime=True, filter=["TPV"]):
                    if stop.is_set():
                        break
                    fix = fix_from_report(report)
                    if fix is not None and not stop.is_set():
                        self._loop.call_soon_threadsafe(self.update_location, fix)
        except Exception as e:
            _LOGGER.error("[GPS] gpsd stream error: %s", e)

    def _set_authorized(self):
        self.authorization_status = AuthorizationStatus.AUTHORIZED
