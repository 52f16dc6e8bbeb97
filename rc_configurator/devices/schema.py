"""Pydantic models for the device catalog.

This module defines the models used to validate device catalog files
(YAML/JSON) before they are loaded into the device registry. Loaded
models are frozen: the registry hands them out read-only.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rc_configurator.types import ConnectionType

TARGET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
ARCHITECTURE_PATTERN = re.compile(r"^[a-z0-9_]+(-[a-z0-9_]+){1,3}$")


class TargetSchema(BaseModel):
    """A buildable hardware variant.

    Attributes:
        name: Unique target name (e.g., 'TX_ESP32').
        platform: Toolchain platform (e.g., 'espressif32').
        board: Board definition used by the toolchain.
        architecture: Architecture triple (e.g., 'xtensa-esp32-elf').
        environment: Toolchain environment name; defaults to ``name``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Annotated[str, Field(min_length=1, max_length=255)]
    platform: Annotated[str, Field(min_length=1, max_length=100)]
    board: Annotated[str, Field(min_length=1, max_length=100)]
    architecture: Annotated[str, Field(min_length=1, max_length=100)]
    environment: str | None = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate target name characters."""
        if not TARGET_NAME_PATTERN.match(v):
            raise ValueError(
                f"target name may only contain letters, digits, '_', '.', '-': '{v}'"
            )
        return v

    @field_validator("architecture")
    @classmethod
    def validate_architecture(cls, v: str) -> str:
        """Validate the architecture looks like a triple."""
        if not ARCHITECTURE_PATTERN.match(v):
            raise ValueError(f"architecture must be a target triple, got '{v}'")
        return v

    @property
    def build_environment(self) -> str:
        """Environment the toolchain builds for this target."""
        return self.environment or self.name


class DeviceSchema(BaseModel):
    """A target plus user-facing metadata and accepted parameters.

    Attributes:
        target: Hardware target definition.
        product_name: Name shown to users.
        category: Optional grouping (e.g., '2.4 GHz Transmitters').
        connection_types: Supported ways to flash/monitor the device.
        parameters: Names of configuration parameters the device accepts.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    target: TargetSchema
    product_name: Annotated[str, Field(min_length=1, max_length=255)]
    category: str | None = None
    connection_types: tuple[ConnectionType, ...] = ()
    parameters: tuple[str, ...] = ()

    @field_validator("parameters")
    @classmethod
    def validate_parameters(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject duplicate parameter names."""
        duplicates = sorted({p for p in v if v.count(p) > 1})
        if duplicates:
            raise ValueError(f"duplicate parameters: {', '.join(duplicates)}")
        return v

    @property
    def name(self) -> str:
        """Target name, the registry key."""
        return self.target.name


class DeviceCatalogSchema(BaseModel):
    """A file holding several devices."""

    model_config = ConfigDict(extra="forbid")

    devices: list[DeviceSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_targets(self) -> "DeviceCatalogSchema":
        """Reject catalogs that define a target twice."""
        seen: set[str] = set()
        for device in self.devices:
            if device.name in seen:
                raise ValueError(f"duplicate target name: '{device.name}'")
            seen.add(device.name)
        return self


__all__ = ["DeviceCatalogSchema", "DeviceSchema", "TargetSchema"]
