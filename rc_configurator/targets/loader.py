"""Targets loader contract and shared logic.

A targets loader answers which targets a firmware version can build. The
device registry holds every known device; a loader narrows it down to the
devices whose target the selected version defines. The backend (git
repository or HTTP endpoint) is decided once at startup.

Targets documents are YAML/JSON mappings::

    version: 3.4.0
    targets: [TX_ESP32, RX_ESP8285]

``targets`` may also be a mapping keyed by target name.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import yaml

from rc_configurator.devices.io import load_mapping

if TYPE_CHECKING:
    from rc_configurator.devices.registry import DeviceRegistry
    from rc_configurator.devices.schema import DeviceSchema
    from rc_configurator.firmware.models import FirmwareSource

logger = logging.getLogger(__name__)

TARGETS_FILENAMES = ("targets.json", "targets.yaml", "targets.yml")


class TargetsError(Exception):
    """Raised when the targets of a firmware version cannot be loaded.

    Codes: ``targets_unavailable``, ``invalid_targets``.
    """

    def __init__(self, message: str, code: str = "targets_unavailable") -> None:
        super().__init__(message)
        self.code = code


class TargetsLoader(Protocol):
    """Capability every targets backend provides."""

    async def list_targets(self, source: FirmwareSource) -> list[str]:
        """Return the target names ``source`` defines, sorted."""
        ...

    async def available_devices(
        self, registry: DeviceRegistry, source: FirmwareSource
    ) -> list[DeviceSchema]:
        """Return the registry devices ``source`` can build."""
        ...


def parse_targets(data: dict[str, Any]) -> list[str]:
    """Return the sorted target names of a targets document.

    Raises:
        TargetsError: With code ``invalid_targets``.
    """
    targets = data.get("targets")
    if isinstance(targets, dict):
        names = list(targets)
    elif isinstance(targets, list):
        names = targets
    else:
        raise TargetsError(
            "Targets document needs a 'targets' list or mapping", code="invalid_targets"
        )
    if not all(isinstance(name, str) and name for name in names):
        raise TargetsError("Target names must be non-empty strings", code="invalid_targets")
    return sorted(set(names))


def read_targets_file(root: Path) -> list[str]:
    """Read the targets document at the root of a source tree.

    Raises:
        TargetsError: If no document exists or it is malformed.
    """
    for filename in TARGETS_FILENAMES:
        path = root / filename
        if path.is_file():
            try:
                data = load_mapping(path)
            except (OSError, yaml.YAMLError, ValueError) as e:
                raise TargetsError(
                    f"Failed to read {path}: {e}", code="invalid_targets"
                ) from e
            return parse_targets(data)
    raise TargetsError(
        f"No targets document in {root} (looked for {', '.join(TARGETS_FILENAMES)})"
    )


class TargetsListLoader(ABC):
    """Base for loaders reading a targets document per firmware version.

    Local sources are read from their tree; other versions go through
    ``_fetch_targets``. Results are cached per version until ``refresh``.
    """

    def __init__(self) -> None:
        self._cache: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    @abstractmethod
    async def _fetch_targets(self, source: FirmwareSource) -> list[str]:
        """Fetch the target names of a git version."""

    async def list_targets(self, source: FirmwareSource) -> list[str]:
        """Return the target names ``source`` defines.

        Raises:
            TargetsError: If the targets cannot be loaded.
        """
        if source.local_path is not None:
            return await asyncio.to_thread(read_targets_file, source.local_path)

        async with self._lock:
            cached = self._cache.get(source.key)
            if cached is None:
                cached = await self._fetch_targets(source)
                self._cache[source.key] = cached
                logger.info("Firmware %s defines %d targets", source, len(cached))
        return list(cached)

    async def available_devices(
        self, registry: DeviceRegistry, source: FirmwareSource
    ) -> list[DeviceSchema]:
        """Return the registry devices ``source`` can build, by target name."""
        names = set(await self.list_targets(source))
        devices = [d for d in registry.list() if d.name in names]
        unknown = names - {d.name for d in devices}
        if unknown:
            logger.debug(
                "Firmware %s targets without a device definition: %s",
                source,
                ", ".join(sorted(unknown)),
            )
        return devices

    def refresh(self) -> None:
        """Drop cached target lists; the next call fetches again."""
        self._cache.clear()


__all__ = [
    "TARGETS_FILENAMES",
    "TargetsError",
    "TargetsListLoader",
    "TargetsLoader",
    "parse_targets",
    "read_targets_file",
]
