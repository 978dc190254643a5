# Author: Omi Shrestha

"""
BLE central transport backed by bleak.

Every operation returns immediately; the actual bleak coroutine runs as a
task on the event loop and its outcome comes back as a BLE event through
the registered handler.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Set

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from ble_events import (
    AdvertisementReceived,
    BleEvent,
    CharacteristicsDiscovered,
    Connected,
    Disconnected,
    NotificationStateChanged,
    RadioStateChanged,
    ServicesDiscovered,
    ValueUpdated,
    WriteCompleted,
)

_LOGGER = logging.getLogger(__name__)

# Fragments of bleak/BlueZ/CoreBluetooth errors that mean the adapter is unusable
RADIO_OFF_MARKERS = (
    "not ready",
    "powered off",
    "poweredoff",
    "no bluetooth adapters",
    "bluetooth device is turned off",
    "not available",
)


def is_radio_error(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in RADIO_OFF_MARKERS)


class BleakCentral:
    """Central role over bleak, reporting through a single event handler."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handler: Optional[Callable[[BleEvent], None]] = None
        self._scanner: Optional[BleakScanner] = None
        self._starting: Optional[BleakScanner] = None  # Scanner whose start() is pending
        self._client: Optional[BleakClient] = None
        self._advertised: Dict[str, BLEDevice] = {}   # address -> last seen bleak device
        self._tasks: Set[asyncio.Task] = set()
        self._radio_on: Optional[bool] = None

    def set_event_handler(self, handler: Callable[[BleEvent], None]):
        self._handler = handler

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    def _emit(self, event: BleEvent):
        if self._handler is not None:
            self._handler(event)

    def _spawn(self, coro):
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _radio(self, powered: bool):
        if self._radio_on != powered:
            self._radio_on = powered
            self._emit(RadioStateChanged(powered=powered))

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _detection_callback(self, device: BLEDevice, adv: AdvertisementData):
        self._advertised[device.address] = device
        self._emit(AdvertisementReceived(
            identifier=device.address,
            name=adv.local_name,
            rssi=adv.rssi,
        ))

    def start_scan(self):
        self._spawn(self._start_scan())

    async def _start_scan(self):
        if self._scanner is not None:
            return
        self._advertised.clear()
        scanner = BleakScanner(detection_callback=self._detection_callback)
        self._scanner = scanner
        self._starting = scanner
        try:
            await scanner.start()
        except BleakError as e:
            _LOGGER.error("[BLE] Scan start failed: %s", e)
            if self._scanner is scanner:
                self._scanner = None
            if is_radio_error(e):
                self._radio(False)
            return
        finally:
            if self._starting is scanner:
                self._starting = None
        self._radio(True)
        if self._scanner is not scanner:
            # stop_scan() ran while start() was pending
            await self._stop_scanner(scanner)

    def stop_scan(self):
        self._spawn(self._stop_scan())

    async def _stop_scan(self):
        scanner, self._scanner = self._scanner, None
        if scanner is None or scanner is self._starting:
            return
        await self._stop_scanner(scanner)

    async def _stop_scanner(self, scanner: BleakScanner):
        try:
            await scanner.stop()
        except BleakError as e:
            _LOGGER.error("[BLE] Scan stop failed: %s", e)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _on_disconnect(self, client: BleakClient):
        if client is self._client:
            self._client = None
        self._emit(Disconnected(identifier=client.address))

    def connect(self, identifier: str):
        self._spawn(self._connect(identifier))

    async def _connect(self, identifier: str):
        device = self._advertised.get(identifier, identifier)
        client = BleakClient(device, disconnected_callback=self._on_disconnect)
        self._client = client
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            _LOGGER.error("[BLE] Connection to %s failed: %s", identifier, e)
            self._client = None
            if isinstance(e, BleakError) and is_radio_error(e):
                self._radio(False)
            self._emit(Disconnected(identifier=identifier, error=str(e)))
            return
        name = getattr(device, "name", None)
        self._emit(Connected(identifier=identifier, name=name))

    def disconnect(self):
        self._spawn(self._disconnect())

    async def _disconnect(self):
        client = self._client
        if client is None:
            return
        try:
            if client.is_connected:
                await client.disconnect()
        except EOFError:
            # D-Bus connection already closed
            pass
        except BleakError as e:
            _LOGGER.error("[BLE] Disconnect error: %s", e)

    # ------------------------------------------------------------------
    # GATT
    # ------------------------------------------------------------------

    def discover_services(self, service_uuid: str):
        self._spawn(self._discover_services(service_uuid))

    async def _discover_services(self, service_uuid: str):
        client = self._client
        if client is None or not client.is_connected:
            self._emit(ServicesDiscovered(error="not connected"))
            return
        try:
            services = client.services
        except BleakError as e:
            self._emit(ServicesDiscovered(error=str(e)))
            return
        found = tuple(
            s.uuid for s in services
            if s.uuid.lower() == service_uuid.lower()
        )
        self._emit(ServicesDiscovered(service_uuids=found))

    def discover_characteristics(self, service_uuid: str):
        self._spawn(self._discover_characteristics(service_uuid))

    async def _discover_characteristics(self, service_uuid: str):
        client = self._client
        if client is None or not client.is_connected:
            self._emit(CharacteristicsDiscovered(service_uuid=service_uuid, error="not connected"))
            return
        service = client.services.get_service(service_uuid)
        if service is None:
            self._emit(CharacteristicsDiscovered(service_uuid=service_uuid, error="service not found"))
            return
        self._emit(CharacteristicsDiscovered(
            service_uuid=service_uuid,
            characteristic_uuids=tuple(c.uuid for c in service.characteristics),
        ))

    def set_notify(self, characteristic_uuid: str):
        self._spawn(self._set_notify(characteristic_uuid))

    async def _set_notify(self, characteristic_uuid: str):
        def notify_handler(sender, data: bytearray):
            self._emit(ValueUpdated(characteristic_uuid=characteristic_uuid, data=bytes(data)))

        client = self._client
        try:
            if client is None:
                raise BleakError("not connected")
            await client.start_notify(characteristic_uuid, notify_handler)
        except BleakError as e:
            self._emit(NotificationStateChanged(characteristic_uuid, enabled=False, error=str(e)))
            return
        self._emit(NotificationStateChanged(characteristic_uuid, enabled=True))

    def read(self, characteristic_uuid: str):
        self._spawn(self._read(characteristic_uuid))

    async def _read(self, characteristic_uuid: str):
        client = self._client
        try:
            if client is None:
                raise BleakError("not connected")
            data = await client.read_gatt_char(characteristic_uuid)
        except BleakError as e:
            self._emit(ValueUpdated(characteristic_uuid=characteristic_uuid, error=str(e)))
            return
        self._emit(ValueUpdated(characteristic_uuid=characteristic_uuid, data=bytes(data)))

    def write(self, characteristic_uuid: str, data: bytes):
        self._spawn(self._write(characteristic_uuid, data))

    async def _write(self, characteristic_uuid: str, data: bytes):
        client = self._client
        try:
            if client is None:
                raise BleakError("not connected")
            await client.write_gatt_char(characteristic_uuid, data, response=True)
        except BleakError as e:
            self._emit(WriteCompleted(characteristic_uuid=characteristic_uuid, error=str(e)))
            return
        self._emit(WriteCompleted(characteristic_uuid=characteristic_uuid))

    async def close(self):
        """Stop scanning, drop the link and wait for pending operations."""
        await self._stop_scan()
        await self._disconnect()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
