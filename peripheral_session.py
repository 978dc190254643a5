"""
Peripheral session
Owns the BLE central role for the one configured peripheral: scan, filter
by advertised name, connect, discover the service and its write/control/
notify characteristics, then route outgoing messages and incoming values.

All transport outcomes arrive as BLE events through handle_event().
"""

import logging
from typing import Callable, List, Optional, Protocol

from ble_device import (
    STATUS_RADIO_OFF,
    STATUS_READY,
    STATUS_SCANNING,
    CharacteristicRole,
    ConnectionState,
    DiscoveredDevice,
    PeripheralState,
)
from ble_events import (
    AdvertisementReceived,
    BleEvent,
    CharacteristicsDiscovered,
    Connected,
    Disconnected,
    NotificationStateChanged,
    RadioStateChanged,
    ServicesDiscovered,
    ServicesInvalidated,
    ValueUpdated,
    WriteCompleted,
)
from config import Settings
from notification_handler import EventLog, decode_payload

_LOGGER = logging.getLogger(__name__)


class Central(Protocol):
    """What the session needs from a BLE central transport."""

    def set_event_handler(self, handler: Callable[[BleEvent], None]) -> None: ...
    def start_scan(self) -> None: ...
    def stop_scan(self) -> None: ...
    def connect(self, identifier: str) -> None: ...
    def disconnect(self) -> None: ...
    def discover_services(self, service_uuid: str) -> None: ...
    def discover_characteristics(self, service_uuid: str) -> None: ...
    def set_notify(self, characteristic_uuid: str) -> None: ...
    def read(self, characteristic_uuid: str) -> None: ...
    def write(self, characteristic_uuid: str, data: bytes) -> None: ...


class PeripheralSession:
    """BLE lifecycle state machine for a single named peripheral."""

    def __init__(self, settings: Settings, central: Central, event_log: Optional[EventLog] = None):
        self.settings = settings
        self.central = central
        self.event_log = event_log or EventLog()
        self.state = PeripheralState()
        self._listeners: List[Callable[[PeripheralState], None]] = []
        self._roles = {
            settings.write_uuid.lower(): CharacteristicRole.WRITE,
            settings.control_uuid.lower(): CharacteristicRole.CONTROL,
            settings.notify_uuid.lower(): CharacteristicRole.NOTIFY,
        }
        central.set_event_handler(self.handle_event)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[PeripheralState], None]):
        """Call callback with the state after every change."""
        self._listeners.append(callback)

    def _changed(self):
        for callback in list(self._listeners):
            try:
                callback(self.state)
            except Exception:
                _LOGGER.exception("[BLE] State listener failed")

    def _log(self, message: str):
        _LOGGER.info("[BLE] %s", message)
        self.event_log.add(message)

    @property
    def target_name(self) -> str:
        if self.state.target is not None:
            return self.state.target.name
        return self.settings.device_name

    def role_of(self, characteristic_uuid: str) -> Optional[CharacteristicRole]:
        return self._roles.get(characteristic_uuid.lower())

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start_scan(self):
        """Forget previous matches and listen for advertisements (no service filter)."""
        self.state.devices.clear()
        self.state.seen_identifiers.clear()
        self.state.connection_state = ConnectionState.SCANNING
        self.state.status = STATUS_SCANNING
        self._log("Started scanning for BLE devices")
        self.central.start_scan()
        self._changed()

    def stop_scan(self):
        self.central.stop_scan()
        if self.state.connection_state == ConnectionState.SCANNING:
            self.state.connection_state = ConnectionState.DISCONNECTED
        self._log("Stopped scanning for BLE devices")
        self._changed()

    def disconnect(self):
        """Drop the link and return to idle right away."""
        if self.state.target is not None or self.state.is_connected:
            self.central.disconnect()
        self._reset_link()
        self._log(f"Disconnecting from {self.target_name}")
        self._changed()

    def send(self, message: str) -> bool:
        """Write a message to the WRITE characteristic."""
        return self._write(CharacteristicRole.WRITE, message)

    def send_control(self, command: str) -> bool:
        """Write a command (e.g. "sleep") to the CONTROL characteristic."""
        return self._write(CharacteristicRole.CONTROL, command)

    def _write(self, role: CharacteristicRole, text: str) -> bool:
        handle = self.state.write_handle if role == CharacteristicRole.WRITE else self.state.control_handle
        if not self.state.is_connected or handle is None:
            _LOGGER.error("[BLE] Cannot send %s: not connected or no %s characteristic", role.value, role.value)
            return False

        self.central.write(handle, text.encode('utf-8'))
        if role == CharacteristicRole.WRITE:
            self._log(f"Sent message to {self.target_name}: {text}")
        else:
            self._log(f"Sent control command to {self.target_name}: {text}")
        return True

    def _reset_link(self):
        self.state.is_connected = False
        self.state.write_handle = None
        self.state.control_handle = None
        self.state.connection_state = ConnectionState.DISCONNECTED
        self.state.status = STATUS_READY if self.state.radio_on else STATUS_RADIO_OFF

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    def handle_event(self, event: BleEvent):
        """Apply one transport event to the session state."""
        if isinstance(event, RadioStateChanged):
            self._on_radio_state(event)
        elif isinstance(event, AdvertisementReceived):
            self._on_advertisement(event)
        elif isinstance(event, Connected):
            self._on_connected(event)
        elif isinstance(event, Disconnected):
            self._on_disconnected(event)
        elif isinstance(event, ServicesDiscovered):
            self._on_services(event)
        elif isinstance(event, CharacteristicsDiscovered):
            self._on_characteristics(event)
        elif isinstance(event, ValueUpdated):
            self._on_value(event)
        elif isinstance(event, WriteCompleted):
            if event.error:
                _LOGGER.error("[BLE] Write error: %s", event.error)
            else:
                _LOGGER.debug("[BLE] Data sent successfully to %s", self.target_name)
        elif isinstance(event, NotificationStateChanged):
            if event.error:
                _LOGGER.error("[BLE] Notification error: %s", event.error)
            else:
                _LOGGER.debug("[BLE] Notification state updated for %s", event.characteristic_uuid)
        elif isinstance(event, ServicesInvalidated):
            _LOGGER.info("[BLE] Services modified: %s", ", ".join(event.service_uuids))
        else:
            _LOGGER.warning("[BLE] Unhandled event: %r", event)

    def _on_radio_state(self, event: RadioStateChanged):
        self.state.radio_on = event.powered
        if event.powered:
            if not self.state.is_connected:
                self.state.status = STATUS_READY
            self._log("Bluetooth turned ON")
        else:
            self.state.status = STATUS_RADIO_OFF
            self._log("Bluetooth turned OFF")
        self._changed()

    def _on_advertisement(self, event: AdvertisementReceived):
        if event.name is None or event.name != self.settings.device_name:
            return
        if self.state.connection_state != ConnectionState.SCANNING or self.state.is_connected:
            return
        if event.identifier in self.state.seen_identifiers:
            return

        device = DiscoveredDevice(
            id=len(self.state.devices),
            name=event.name,
            rssi=event.rssi,
            identifier=event.identifier,
        )
        self.state.seen_identifiers.add(event.identifier)
        self.state.devices.append(device)
        self.state.target = device

        self.central.stop_scan()
        self._log("Stopped scanning for BLE devices")
        self.state.connection_state = ConnectionState.CONNECTING
        self.state.status = f"Connecting to {device.name}..."
        self.central.connect(device.identifier)
        self._log(f"Found {device.name} ({device.identifier}), connecting...")
        self._changed()

    def _on_connected(self, event: Connected):
        self.state.is_connected = True
        self.state.connection_state = ConnectionState.CONNECTED
        self.state.status = f"Connected to {event.name or self.target_name}"
        self._log(f"Successfully connected to {self.target_name}")
        self.central.discover_services(self.settings.service_uuid)
        self._changed()

    def _on_disconnected(self, event: Disconnected):
        if event.error:
            _LOGGER.error("[BLE] Disconnected with error: %s", event.error)
        self._reset_link()
        self._log(f"Disconnected from {self.target_name}")
        self._changed()

    def _on_services(self, event: ServicesDiscovered):
        if event.error:
            _LOGGER.error("[BLE] Service discovery error: %s", event.error)
            return
        if not event.service_uuids:
            _LOGGER.error("[BLE] No services discovered")
            return

        _LOGGER.info("[BLE] Discovered %d services", len(event.service_uuids))
        for service_uuid in event.service_uuids:
            self.central.discover_characteristics(service_uuid)

    def _on_characteristics(self, event: CharacteristicsDiscovered):
        if event.error:
            _LOGGER.error("[BLE] Characteristic discovery error: %s", event.error)
            return

        for uuid in event.characteristic_uuids:
            _LOGGER.debug("[BLE] Found characteristic: %s", uuid)
            role = self.role_of(uuid)
            if role == CharacteristicRole.WRITE:
                self.state.write_handle = uuid
                _LOGGER.info("[BLE] Write characteristic ready")
            elif role == CharacteristicRole.CONTROL:
                self.state.control_handle = uuid
                _LOGGER.info("[BLE] Control characteristic ready")
            elif role == CharacteristicRole.NOTIFY:
                self.central.set_notify(uuid)
                _LOGGER.info("[BLE] Subscribed to notifications")

            # Diagnostic read
            self.central.read(uuid)
        self._changed()

    def _on_value(self, event: ValueUpdated):
        if event.error:
            _LOGGER.error("[BLE] Read error: %s", event.error)
            return

        text = decode_payload(event.data)
        if text is None:
            return
        self.state.received_text = text
        self._log(f"Received from {self.target_name}: {text}")
        self._changed()
