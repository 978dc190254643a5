"""
GPS upload scheduler.

Every `upload_interval` seconds the latest fix is compared with the last
one that was sent; when it moved further than `min_distance_change`
metres it is POSTed to the upload endpoint without waiting for the reply.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Set

import aiohttp

from config import Settings
from location_source import PositionFix

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadRecord:
    session_id: str
    timestamp: int      # unix seconds
    lat: float
    lon: float
    type: str = "gps"

    def to_payload(self) -> dict:
        return {
            "session_id": self.session_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "lat": self.lat,
            "lon": self.lon,
        }


class UploadScheduler:
    """Timer-gated, distance-filtered position uploads."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.upload_count = 0
        self.is_connected = False
        self.last_upload_time: Optional[datetime] = None
        self.last_location: Optional[PositionFix] = None
        self._session = session
        self._owns_session = session is None
        self._location_source = None
        self._timer: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.token}",
        }

    def status(self) -> dict:
        return {
            "is_connected": self.is_connected,
            "upload_count": self.upload_count,
            "last_upload_time": self.last_upload_time.isoformat() if self.last_upload_time else None,
        }

    def start(self, location_source):
        """Begin ticking every upload_interval seconds against location_source."""
        self._location_source = location_source
        if self._timer is None or self._timer.done():
            self._timer = asyncio.get_running_loop().create_task(self._run())
            _LOGGER.info("[UPLOAD] Started, every %.1fs to %s", self.settings.upload_interval, self.settings.upload_url)

    def stop(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            _LOGGER.info("[UPLOAD] Stopped")

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def _run(self):
        while True:
            await asyncio.sleep(self.settings.upload_interval)
            self.tick()

    def should_upload(self, location: PositionFix) -> bool:
        if self.last_location is None:
            return True
        distance = location.distance_to(self.last_location)
        return distance > self.settings.min_distance_change

    def tick(self) -> Optional[asyncio.Task]:
        """
        Run one upload decision.

        Returns the spawned upload task, or None when nothing was sent.
        """
        if self._location_source is None:
            return None
        location = self._location_source.location
        if location is None:
            return None
        if not self.should_upload(location):
            return None

        record = UploadRecord(
            session_id=self.settings.session_id,
            timestamp=int(time.time()),
            lat=location.latitude,
            lon=location.longitude,
        )
        task = asyncio.get_running_loop().create_task(self.upload(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        # Advances before the reply is known; a failed send is not retried here
        self.last_location = location
        _LOGGER.info("[UPLOAD] Uploading GPS: %s, %s @ %s", record.lat, record.lon, record.timestamp)
        return task

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def upload(self, record: UploadRecord) -> bool:
        """POST one record. Returns True on HTTP 200."""
        try:
            session = await self._get_session()
            async with session.post(self.settings.upload_url, json=record.to_payload(), headers=self.headers) as response:
                _LOGGER.info("[UPLOAD] GPS Upload Status: %s", response.status)
                body = await response.text()
                _LOGGER.debug("[UPLOAD] Response: %s", body)
                if response.status == 200:
                    self.is_connected = True
                    self.last_upload_time = datetime.now(timezone.utc)
                    self.upload_count += 1
                    return True
                self.is_connected = False
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _LOGGER.warning("[UPLOAD] Upload error: %s", e)
            self.is_connected = False
            return False

    async def close(self):
        self.stop()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
