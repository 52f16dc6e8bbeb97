"""Serial monitor module.

This module handles opening device serial connections, republishing
received lines on the event bus, and writing to open connections.
"""

from rc_configurator.serial_monitor.service import (
    AlreadyOpenError,
    NotOpenError,
    SerialMonitor,
    SerialOpenError,
    SerialParams,
    SerialWriteError,
)

__all__ = [
    "AlreadyOpenError",
    "NotOpenError",
    "SerialMonitor",
    "SerialOpenError",
    "SerialParams",
    "SerialWriteError",
]
