"""
BLE events
Everything the central transport reports back to the peripheral session.
Each event is a small immutable record; the session dispatches on type.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class RadioStateChanged:
    powered: bool


@dataclass(frozen=True)
class AdvertisementReceived:
    identifier: str             # BLE address
    name: Optional[str]         # Advertised local name, None when absent
    rssi: int


@dataclass(frozen=True)
class Connected:
    identifier: str
    name: Optional[str] = None


@dataclass(frozen=True)
class Disconnected:
    identifier: str
    error: Optional[str] = None


@dataclass(frozen=True)
class ServicesDiscovered:
    service_uuids: Tuple[str, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    service_uuid: str
    characteristic_uuids: Tuple[str, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class ValueUpdated:
    """Notification or read completion"""
    characteristic_uuid: str
    data: bytes = field(default=b"", repr=False)
    error: Optional[str] = None


@dataclass(frozen=True)
class WriteCompleted:
    characteristic_uuid: str
    error: Optional[str] = None


@dataclass(frozen=True)
class NotificationStateChanged:
    characteristic_uuid: str
    enabled: bool = True
    error: Optional[str] = None


@dataclass(frozen=True)
class ServicesInvalidated:
    service_uuids: Tuple[str, ...] = ()


BleEvent = Union[
    RadioStateChanged,
    AdvertisementReceived,
    Connected,
    Disconnected,
    ServicesDiscovered,
    CharacteristicsDiscovered,
    ValueUpdated,
    WriteCompleted,
    NotificationStateChanged,
    ServicesInvalidated,
]
