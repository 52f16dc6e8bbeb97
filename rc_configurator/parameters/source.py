"""Configuration source contract and shared resolution logic.

A configuration source turns a device plus caller overrides into the
concrete parameter set a build uses. The build orchestrator only sees the
``ConfigurationSource`` protocol; which backend is active is decided once
at startup.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

from pydantic import ValidationError

from rc_configurator.parameters.schema import ParameterCatalogSchema, ParameterDefinition
from rc_configurator.types import ParameterType, ParameterValue

if TYPE_CHECKING:
    from rc_configurator.devices.schema import DeviceSchema

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


class ConfigurationError(Exception):
    """Raised when parameters cannot be resolved.

    Codes: ``unknown_parameter``, ``unsupported_parameter``,
    ``invalid_value``, ``conflicting_parameters``, ``source_unavailable``,
    ``invalid_catalog``.
    """

    def __init__(
        self,
        message: str,
        code: str = "configuration_error",
        keys: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.keys = keys or []


class ConfigurationSource(Protocol):
    """Capability every configuration backend provides."""

    async def list_available(self, device: DeviceSchema) -> list[ParameterDefinition]:
        """Return the parameter definitions ``device`` accepts."""
        ...

    async def resolve(
        self,
        device: DeviceSchema,
        overrides: Mapping[str, ParameterValue],
    ) -> dict[str, ParameterValue]:
        """Return the concrete parameter set for a build of ``device``."""
        ...


def coerce_value(definition: ParameterDefinition, value: object) -> ParameterValue:
    """Validate and normalize an override value.

    Raises:
        ConfigurationError: With code ``invalid_value``.
    """
    if definition.type is ParameterType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in _TRUE_STRINGS | _FALSE_STRINGS:
            return value.lower() in _TRUE_STRINGS
        raise ConfigurationError(
            f"'{definition.key}' expects a boolean, got {value!r}",
            code="invalid_value",
            keys=[definition.key],
        )

    if not isinstance(value, str):
        raise ConfigurationError(
            f"'{definition.key}' expects a string, got {value!r}",
            code="invalid_value",
            keys=[definition.key],
        )
    if definition.type is ParameterType.ENUM and value not in definition.options:
        raise ConfigurationError(
            f"'{value}' is not a valid value for '{definition.key}' "
            f"(options: {', '.join(definition.options)})",
            code="invalid_value",
            keys=[definition.key],
        )
    return value


def available_parameters(
    catalog: ParameterCatalogSchema,
    device: DeviceSchema,
) -> list[ParameterDefinition]:
    """Return catalog definitions for the parameters a device accepts.

    Parameters the device names but the catalog does not define are
    skipped; the firmware version behind the catalog does not know them.
    """
    definitions = catalog.by_key()
    available: list[ParameterDefinition] = []
    for key in device.parameters:
        definition = definitions.get(key)
        if definition is None:
            logger.debug("Device %s names undefined parameter %s", device.name, key)
            continue
        available.append(definition)
    return available


def resolve_parameters(
    catalog: ParameterCatalogSchema,
    device: DeviceSchema,
    overrides: Mapping[str, object],
) -> dict[str, ParameterValue]:
    """Resolve defaults plus overrides into a concrete parameter set.

    Args:
        catalog: Parameter catalog.
        device: Device being built.
        overrides: Caller-supplied values keyed by parameter name.

    Returns:
        Parameter values keyed by name, in device order.

    Raises:
        ConfigurationError: If an override is unknown, not accepted by the
            device, has an invalid value, or enables two options of one
            exclusive group.
    """
    definitions = catalog.by_key()
    accepted = {d.key: d for d in available_parameters(catalog, device)}

    unknown = sorted(k for k in overrides if k not in definitions)
    if unknown:
        raise ConfigurationError(
            f"Unknown parameters: {', '.join(unknown)}",
            code="unknown_parameter",
            keys=unknown,
        )
    unsupported = sorted(k for k in overrides if k not in accepted)
    if unsupported:
        raise ConfigurationError(
            f"Parameters not supported by {device.name}: {', '.join(unsupported)}",
            code="unsupported_parameter",
            keys=unsupported,
        )

    resolved: dict[str, ParameterValue] = {}
    for key, definition in accepted.items():
        if key in overrides:
            resolved[key] = coerce_value(definition, overrides[key])
        elif definition.default is not None:
            resolved[key] = definition.default

    enabled_by_group: dict[str, list[str]] = {}
    for key, value in resolved.items():
        group = accepted[key].group
        if group is not None and value is True:
            enabled_by_group.setdefault(group, []).append(key)
    for group, keys in enabled_by_group.items():
        if len(keys) > 1:
            raise ConfigurationError(
                f"Only one of {', '.join(keys)} may be enabled ({group})",
                code="conflicting_parameters",
                keys=keys,
            )

    return resolved


class CatalogConfigurationSource(ABC):
    """Base for sources that resolve against a fetched parameter catalog.

    Subclasses implement ``_fetch_catalog``; the parsed catalog is cached
    until ``refresh`` is called.
    """

    def __init__(self) -> None:
        self._catalog: ParameterCatalogSchema | None = None
        self._lock = asyncio.Lock()

    @abstractmethod
    async def _fetch_catalog(self) -> dict[str, object]:
        """Fetch the raw catalog document."""

    async def catalog(self) -> ParameterCatalogSchema:
        """Return the parameter catalog, fetching it on first use.

        Raises:
            ConfigurationError: If the catalog cannot be fetched or parsed.
        """
        async with self._lock:
            if self._catalog is None:
                data = await self._fetch_catalog()
                try:
                    self._catalog = ParameterCatalogSchema.model_validate(data)
                except ValidationError as e:
                    raise ConfigurationError(
                        f"Invalid parameter catalog: {e}", code="invalid_catalog"
                    ) from e
                logger.info(
                    "Loaded %d parameter definitions (version=%s)",
                    len(self._catalog.parameters),
                    self._catalog.version,
                )
            return self._catalog

    def refresh(self) -> None:
        """Drop the cached catalog so the next call fetches it again."""
        self._catalog = None

    async def list_available(self, device: DeviceSchema) -> list[ParameterDefinition]:
        """Return the parameter definitions ``device`` accepts."""
        return available_parameters(await self.catalog(), device)

    async def resolve(
        self,
        device: DeviceSchema,
        overrides: Mapping[str, ParameterValue],
    ) -> dict[str, ParameterValue]:
        """Return the concrete parameter set for a build of ``device``."""
        return resolve_parameters(await self.catalog(), device, overrides)


__all__ = [
    "CatalogConfigurationSource",
    "ConfigurationError",
    "ConfigurationSource",
    "available_parameters",
    "coerce_value",
    "resolve_parameters",
]
