"""Component assembly.

This module wires the configurator components together: the event bus,
device registry, configuration source, toolchain adapter, build
orchestrator, firmware checkouts, targets loader, Lua script resolver,
discovery backend and serial monitor. Collaborators are
passed through constructors; there is no global container. The CLI and
the web transport both go through Services.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rc_configurator import __version__
from rc_configurator.builds.models import BuildRequest
from rc_configurator.builds.runner import PlatformioToolchain
from rc_configurator.builds.service import BuildOrchestrator
from rc_configurator.config import Settings, get_settings
from rc_configurator.devices.registry import DeviceRegistry
from rc_configurator.discovery.mdns import MulticastDnsDiscovery
from rc_configurator.discovery.simulator import SimulatedDiscovery
from rc_configurator.events.bus import EventBus
from rc_configurator.firmware.checkout import FirmwareCheckout
from rc_configurator.firmware.lua import LuaScriptResolver
from rc_configurator.firmware.models import FirmwareSource
from rc_configurator.parameters.git import GitConfigurationSource
from rc_configurator.parameters.http import HttpConfigurationSource
from rc_configurator.serial_monitor.service import (
    DEFAULT_BAUDRATE,
    SerialMonitor,
    SerialParams,
)
from rc_configurator.targets.git import GitTargetsLoader
from rc_configurator.targets.http import HttpTargetsLoader
from rc_configurator.types import ArtifactKind, ParameterValue
from rc_configurator.updates import UpdateInfo, check_for_updates

if TYPE_CHECKING:
    import httpx

    from rc_configurator.builds.models import BuildJob
    from rc_configurator.builds.runner import ToolchainAdapter
    from rc_configurator.devices.schema import DeviceSchema
    from rc_configurator.discovery.models import DiscoveryService
    from rc_configurator.events.bus import Subscription
    from rc_configurator.parameters.schema import ParameterDefinition
    from rc_configurator.parameters.source import ConfigurationSource
    from rc_configurator.targets.loader import TargetsLoader

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The assembled components and the operations exposed to clients."""

    settings: Settings
    bus: EventBus
    registry: DeviceRegistry
    config_source: ConfigurationSource
    toolchain: ToolchainAdapter
    builds: BuildOrchestrator
    firmware: FirmwareCheckout
    targets: TargetsLoader
    lua: LuaScriptResolver
    discovery: DiscoveryService
    serial: SerialMonitor

    async def start(self) -> None:
        """Start background components."""
        await self.discovery.start()

    async def stop(self) -> None:
        """Cancel builds, close serial ports and stop discovery."""
        await self.builds.shutdown()
        await self.serial.close_all()
        await self.discovery.stop()
        self.bus.close()

    def list_devices(self) -> list[DeviceSchema]:
        return self.registry.list()

    async def list_parameters(self, target: str) -> list[ParameterDefinition]:
        """Return the parameters available for ``target``.

        Raises:
            DeviceNotFoundError: If the target is unknown.
            ConfigurationError: If the catalog cannot be fetched.
        """
        return await self.config_source.list_available(self.registry.get(target))

    def default_firmware(self) -> FirmwareSource:
        """Firmware version used when a caller names none."""
        return FirmwareSource.branch(self.settings.targets_ref)

    async def list_targets(
        self, firmware: FirmwareSource | None = None
    ) -> list[DeviceSchema]:
        """Return the devices a firmware version can build.

        Raises:
            TargetsError: If the version's targets cannot be loaded.
        """
        return await self.targets.available_devices(
            self.registry, firmware or self.default_firmware()
        )

    async def submit_build(
        self,
        target: str,
        overrides: Mapping[str, ParameterValue] | None = None,
        artifact_kind: ArtifactKind = ArtifactKind.BUILD,
        firmware: FirmwareSource | None = None,
    ) -> BuildJob:
        """Submit a build; see BuildOrchestrator.submit."""
        request = BuildRequest(
            target=target,
            overrides=dict(overrides or {}),
            artifact_kind=artifact_kind,
            firmware=firmware,
        )
        return await self.builds.submit(request)

    async def lua_script(self, firmware: FirmwareSource | None = None) -> Path:
        """Return the radio Lua script shipped with a firmware version.

        Raises:
            FirmwareSourceError: If the version cannot be checked out.
            LuaScriptNotFoundError: If the version ships no script.
        """
        return await self.lua.resolve(firmware or self.default_firmware())

    def cancel_build(self, target: str) -> bool:
        return self.builds.cancel(target)

    def subscribe_events(self, topic: str, maxsize: int | None = None) -> Subscription:
        return self.bus.subscribe(topic, maxsize)

    async def open_serial(
        self,
        device_id: str,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
    ) -> None:
        await self.serial.open(device_id, SerialParams(port=port, baudrate=baudrate))

    async def write_serial(self, device_id: str, data: bytes) -> int:
        return await self.serial.write(device_id, data)

    async def close_serial(self, device_id: str) -> bool:
        return await self.serial.close(device_id)

    async def check_updates(self, client: httpx.AsyncClient | None = None) -> UpdateInfo:
        """Check the configured repository for a newer release."""
        return await check_for_updates(
            __version__, self.settings.update_repository, client=client
        )


def build_config_source(settings: Settings) -> ConfigurationSource:
    """Create the configuration source selected by ``settings.config_source``."""
    if settings.config_source == "http":
        return HttpConfigurationSource(
            settings.config_endpoint, timeout=settings.http_timeout
        )
    return GitConfigurationSource(
        settings.config_repository,
        settings.config_cache_dir,
        ref=settings.config_ref,
        timeout=settings.git_timeout,
    )


def build_targets_loader(settings: Settings) -> TargetsLoader:
    """Create the targets loader selected by ``settings.targets_loader``."""
    if settings.targets_loader == "http":
        return HttpTargetsLoader(settings.targets_endpoint, timeout=settings.http_timeout)
    return GitTargetsLoader(
        settings.targets_repository,
        settings.targets_cache_dir,
        timeout=settings.git_timeout,
    )


def build_firmware_checkout(settings: Settings) -> FirmwareCheckout:
    """Create the provider of per-version firmware trees."""
    return FirmwareCheckout(
        settings.firmware_repository,
        settings.firmwares_dir,
        project_subdir=settings.firmware_project_dir,
        timeout=settings.git_timeout,
    )


def build_discovery(settings: Settings, bus: EventBus) -> DiscoveryService:
    """Create the discovery backend selected by ``settings.discovery_mode``."""
    if settings.discovery_mode == "simulated":
        return SimulatedDiscovery(
            bus,
            timeout=settings.discovery_timeout,
            interval=settings.discovery_interval,
            repeat=True,
        )
    return MulticastDnsDiscovery(
        bus,
        timeout=settings.discovery_timeout,
        interval=settings.discovery_interval,
        vendor=settings.discovery_vendor,
    )


def build_services(
    settings: Settings | None = None,
    *,
    config_source: ConfigurationSource | None = None,
    toolchain: ToolchainAdapter | None = None,
    targets_loader: TargetsLoader | None = None,
    firmware: FirmwareCheckout | None = None,
    discovery: DiscoveryService | None = None,
    serial_factory: Callable[..., Any] | None = None,
) -> Services:
    """Assemble every component from settings.

    Keyword arguments replace the corresponding component.

    Raises:
        LoadError: If the device catalog exists but cannot be loaded.
    """
    if settings is None:
        settings = get_settings()

    bus = EventBus(buffer_size=settings.event_buffer_size)

    registry = DeviceRegistry()
    if settings.devices_path.exists():
        registry.load(settings.devices_path)
    else:
        logger.warning(
            "Device catalog %s not found; starting with no devices",
            settings.devices_path,
        )

    if config_source is None:
        config_source = build_config_source(settings)
    if toolchain is None:
        toolchain = PlatformioToolchain(
            settings.firmware_dir,
            platformio_path=settings.platformio_path,
            grace_period=settings.cancel_grace_period,
            timeout=settings.toolchain_timeout,
        )
    if targets_loader is None:
        targets_loader = build_targets_loader(settings)
    if firmware is None:
        firmware = build_firmware_checkout(settings)
    if discovery is None:
        discovery = build_discovery(settings, bus)
    serial = (
        SerialMonitor(bus)
        if serial_factory is None
        else SerialMonitor(bus, serial_factory=serial_factory)
    )

    return Services(
        settings=settings,
        bus=bus,
        registry=registry,
        config_source=config_source,
        toolchain=toolchain,
        builds=BuildOrchestrator(
            registry, config_source, toolchain, bus, firmware=firmware
        ),
        firmware=firmware,
        targets=targets_loader,
        lua=LuaScriptResolver(firmware),
        discovery=discovery,
        serial=serial,
    )


__all__ = [
    "Services",
    "build_config_source",
    "build_discovery",
    "build_firmware_checkout",
    "build_services",
    "build_targets_loader",
]
