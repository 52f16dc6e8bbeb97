"""In-memory registry of known devices.

The registry is loaded once at startup and queried read-only afterwards.
A reload builds a complete new mapping and swaps it in with one
assignment, so readers see either the old or the new catalog.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

import yaml

from rc_configurator.devices.io import load_devices
from rc_configurator.devices.schema import DeviceSchema

logger = logging.getLogger(__name__)


class LoadError(Exception):
    """Raised when a device catalog cannot be read or is malformed."""

    def __init__(self, message: str, code: str = "load_error") -> None:
        super().__init__(message)
        self.code = code


class DeviceNotFoundError(Exception):
    """Raised when a target is not in the registry."""

    def __init__(self, target: str, code: str = "device_not_found") -> None:
        super().__init__(f"Device not found: {target}")
        self.target = target
        self.code = code


class DeviceRegistry:
    """Catalog of devices keyed by target name."""

    def __init__(self, devices: Iterable[DeviceSchema] = ()) -> None:
        self._devices: Mapping[str, DeviceSchema] = self._index(devices)
        self._reload_lock = threading.Lock()
        self.source: Path | None = None

    @staticmethod
    def _index(devices: Iterable[DeviceSchema]) -> Mapping[str, DeviceSchema]:
        index: dict[str, DeviceSchema] = {}
        for device in devices:
            if device.name in index:
                raise LoadError(f"Duplicate target name: {device.name}")
            index[device.name] = device
        return MappingProxyType(dict(sorted(index.items())))

    def load(self, source: Path | str) -> int:
        """Replace the registry with the catalog at ``source``.

        Args:
            source: Catalog file or directory.

        Returns:
            Number of devices loaded.

        Raises:
            LoadError: If the source is unreadable or malformed. The
                previous catalog stays in place.
        """
        path = Path(source)
        with self._reload_lock:
            try:
                devices = load_devices(path)
            except (OSError, yaml.YAMLError, ValueError) as e:
                raise LoadError(f"Failed to load devices from {path}: {e}") from e
            index = self._index(devices)
            self._devices = index
            self.source = path
        logger.info("Loaded %d devices from %s", len(index), path)
        return len(index)

    def replace(self, devices: Iterable[DeviceSchema]) -> None:
        """Replace the registry with an in-memory catalog."""
        index = self._index(devices)
        with self._reload_lock:
            self._devices = index

    def get(self, target: str) -> DeviceSchema:
        """Return the device for ``target``.

        Raises:
            DeviceNotFoundError: If the target is unknown.
        """
        device = self._devices.get(target)
        if device is None:
            raise DeviceNotFoundError(target)
        return device

    def list(self) -> list[DeviceSchema]:
        """Return all devices ordered by target name."""
        return list(self._devices.values())

    def __contains__(self, target: object) -> bool:
        return target in self._devices

    def __len__(self) -> int:
        return len(self._devices)


__all__ = ["DeviceNotFoundError", "DeviceRegistry", "LoadError"]
