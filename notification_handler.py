# Author: Omi Shrestha

import logging
import time
from typing import Callable, List, Optional

_LOGGER = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 100


def decode_payload(data) -> Optional[str]:
    """
    Decode a notification or read payload from the peripheral.

    Args:
        data: Raw bytes as delivered by the transport

    Returns:
        The UTF-8 text, or None when the payload is not valid UTF-8
    """
    try:
        return bytes(data).decode('utf-8')
    except UnicodeDecodeError:
        _LOGGER.debug("[BLE] Dropping binary payload: %s", bytes(data).hex())
        return None


class EventLog:
    """
    Bounded list of timestamped lifecycle lines with push-style subscribers.
    Keeps the most recent MAX_LOG_ENTRIES lines.
    """

    def __init__(self, limit: int = MAX_LOG_ENTRIES):
        self.limit = limit
        self.entries: List[str] = []
        self._subscribers: List[Callable[[str], None]] = []

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register a callback for every new line. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def add(self, message: str) -> str:
        timestamp = time.strftime("%H:%M:%S")
        line = f"[{timestamp}] {message}"
        self.entries.append(line)
        if len(self.entries) > self.limit:
            self.entries.pop(0)

        for callback in list(self._subscribers):
            try:
                callback(line)
            except Exception:
                _LOGGER.exception("Log subscriber failed")
        return line

    def recent(self, limit: int = 10) -> List[str]:
        """Last limit lines, oldest first. A non-positive limit returns nothing."""
        if limit <= 0:
            return []
        return self.entries[-limit:]

    def clear(self):
        self.entries.clear()
