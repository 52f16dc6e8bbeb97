"""Last-seen bookkeeping shared by the discovery backends.

The tracker turns a stream of advertisements into DeviceDiscovered and
DeviceLost events. Time is passed in by the caller so the simulator can
drive it with a virtual clock.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rc_configurator.events.models import DISCOVERY_TOPIC, DeviceLost

if TYPE_CHECKING:
    from rc_configurator.discovery.models import DiscoveredDevice
    from rc_configurator.events.bus import EventBus

logger = logging.getLogger(__name__)


class DeviceTracker:
    """Tracks advertised devices and publishes discovery events.

    Args:
        bus: Event bus receiving discovery events.
        timeout: Seconds without an advertisement before a device is lost.
    """

    def __init__(self, bus: EventBus, timeout: float) -> None:
        self.bus = bus
        self.timeout = timeout
        self._devices: dict[str, DiscoveredDevice] = {}
        self._last_seen: dict[str, float] = {}

    def seen(self, device: DiscoveredDevice, now: float) -> bool:
        """Record an advertisement.

        Returns:
            True if a DeviceDiscovered event was published (new device or
            changed advertisement).
        """
        self._last_seen[device.device_id] = now
        if self._devices.get(device.device_id) == device:
            return False
        self._devices[device.device_id] = device
        logger.info("Discovered %s (%s)", device.name, device.address)
        self.bus.publish(DISCOVERY_TOPIC, device.to_event())
        return True

    def lost(self, device_id: str) -> bool:
        """Forget a device and publish DeviceLost if it was known."""
        device = self._devices.pop(device_id, None)
        self._last_seen.pop(device_id, None)
        if device is None:
            return False
        logger.info("Lost %s", device.name)
        self.bus.publish(
            DISCOVERY_TOPIC, DeviceLost(device_id=device.device_id, name=device.name)
        )
        return True

    def expire(self, now: float) -> list[str]:
        """Publish DeviceLost for every device not seen within the timeout.

        Returns:
            Ids of the devices that were lost, in id order.
        """
        stale = sorted(
            device_id
            for device_id, last_seen in self._last_seen.items()
            if now - last_seen > self.timeout
        )
        for device_id in stale:
            self.lost(device_id)
        return stale

    def devices(self) -> list[DiscoveredDevice]:
        """Return currently known devices ordered by id."""
        return [self._devices[d] for d in sorted(self._devices)]

    def reset(self) -> None:
        """Forget every device without publishing events."""
        self._devices.clear()
        self._last_seen.clear()


__all__ = ["DeviceTracker"]
