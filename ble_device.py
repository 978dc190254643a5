# Author: Omi Shrestha

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set

STATUS_DISCONNECTED = "Disconnected"
STATUS_READY = "Ready to connect"
STATUS_RADIO_OFF = "Bluetooth OFF"
STATUS_SCANNING = "Scanning..."


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class CharacteristicRole(Enum):
    """The three characteristic roles of the peripheral service"""
    WRITE = "write"        # Host sends data, acknowledged writes
    CONTROL = "control"    # Host sends out-of-band commands
    NOTIFY = "notify"      # Peripheral pushes data


@dataclass(frozen=True)
class DiscoveredDevice:
    """An advertisement that matched the configured device name"""
    id: int             # Sequential within one scan
    name: str           # Advertised local name
    rssi: int           # Signal strength
    identifier: str     # Platform address


class PeripheralState:
    """Observable state of the peripheral session."""

    def __init__(self):
        self.radio_on = False                        # Adapter powered
        self.connection_state = ConnectionState.DISCONNECTED
        self.status = STATUS_DISCONNECTED            # Human readable status
        self.is_connected = False                    # Link established
        self.devices: List[DiscoveredDevice] = []    # Matches of the current scan
        self.seen_identifiers: Set[str] = set()      # Addresses recorded this scan
        self.target: Optional[DiscoveredDevice] = None
        self.write_handle: Optional[str] = None      # WRITE characteristic UUID
        self.control_handle: Optional[str] = None    # CONTROL characteristic UUID
        self.received_text = ""                      # Last decoded notification/read

    def as_dict(self):
        return {
            "radio_on": self.radio_on,
            "connection_state": self.connection_state.value,
            "status": self.status,
            "is_connected": self.is_connected,
            "devices": [
                {"id": d.id, "name": d.name, "rssi": d.rssi, "identifier": d.identifier}
                for d in self.devices
            ],
            "target": self.target.identifier if self.target else None,
            "received_text": self.received_text,
        }
