"""Discovery data types and the discovery service contract."""

from dataclasses import dataclass, field
from typing import Protocol

from rc_configurator.events.models import DeviceDiscovered


@dataclass(frozen=True)
class DiscoveredDevice:
    """A device advertisement.

    Attributes:
        device_id: Stable identifier (the advertised service name).
        name: Human-readable device name.
        address: IP address the device answered from.
        port: Advertised service port.
        target: Firmware target reported by the device.
        version: Firmware version reported by the device.
        device_type: Device role (e.g., 'rx', 'tx').
        options: Remaining advertisement properties.
    """

    device_id: str
    name: str
    address: str | None = None
    port: int | None = None
    target: str | None = None
    version: str | None = None
    device_type: str | None = None
    options: dict[str, str] = field(default_factory=dict, hash=False)

    def to_event(self) -> DeviceDiscovered:
        """Build the DeviceDiscovered event announcing this device."""
        return DeviceDiscovered(
            device_id=self.device_id,
            name=self.name,
            address=self.address,
            port=self.port,
            target=self.target,
            version=self.version,
            device_type=self.device_type,
            options=dict(self.options),
        )


class DiscoveryService(Protocol):
    """Capability shared by the live and simulated discovery backends."""

    async def start(self) -> None:
        """Begin emitting discovery events."""
        ...

    async def stop(self) -> None:
        """Stop emitting discovery events and release resources."""
        ...


__all__ = ["DiscoveredDevice", "DiscoveryService"]
