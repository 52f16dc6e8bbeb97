"""Event distribution module.

This module handles:
- Event models (build output, build state, discovery, serial lines)
- The in-process topic-addressed event bus
"""

from rc_configurator.events.bus import EventBus, Subscription
from rc_configurator.events.models import (
    DISCOVERY_TOPIC,
    BuildOutputLine,
    BuildStateChanged,
    DeviceDiscovered,
    DeviceLost,
    Event,
    SerialLine,
    build_topic,
    serial_topic,
)

__all__ = [
    "DISCOVERY_TOPIC",
    "BuildOutputLine",
    "BuildStateChanged",
    "DeviceDiscovered",
    "DeviceLost",
    "Event",
    "EventBus",
    "SerialLine",
    "Subscription",
    "build_topic",
    "serial_topic",
]
