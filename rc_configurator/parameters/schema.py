"""Pydantic models for firmware configuration parameter catalogs.

A catalog lists every parameter the firmware understands. Devices name
the subset they accept; configuration sources resolve that subset into a
concrete parameter set.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rc_configurator.types import ParameterType, ParameterValue

PARAMETER_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ParameterDefinition(BaseModel):
    """Definition of one configuration parameter.

    Attributes:
        key: Parameter name (e.g., 'Regulatory_Domain_EU_868').
        type: Value type.
        default: Value used when the caller does not override it.
        options: Allowed values for enum parameters.
        group: Exclusive group; at most one boolean per group may be on.
        description: Optional help text.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: Annotated[str, Field(min_length=1, max_length=255)]
    type: ParameterType = ParameterType.BOOLEAN
    default: ParameterValue | None = None
    options: tuple[str, ...] = ()
    group: str | None = None
    description: str | None = None

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Keys become preprocessor symbols, so they must be identifiers."""
        if not PARAMETER_KEY_PATTERN.match(v):
            raise ValueError(f"parameter key must be an identifier, got '{v}'")
        return v

    @model_validator(mode="after")
    def validate_default(self) -> "ParameterDefinition":
        """Check the default against the declared type."""
        if self.type is ParameterType.ENUM:
            if not self.options:
                raise ValueError(f"enum parameter '{self.key}' needs options")
            if self.default is not None and self.default not in self.options:
                raise ValueError(
                    f"default '{self.default}' of '{self.key}' is not an option"
                )
        elif self.type is ParameterType.BOOLEAN:
            if self.default is not None and not isinstance(self.default, bool):
                raise ValueError(f"default of boolean '{self.key}' must be a bool")
        elif isinstance(self.default, bool):
            raise ValueError(f"default of text '{self.key}' must be a string")
        return self


class ParameterCatalogSchema(BaseModel):
    """Top-level catalog document."""

    model_config = ConfigDict(extra="forbid")

    version: str | None = None
    parameters: list[ParameterDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_keys(self) -> "ParameterCatalogSchema":
        """Reject catalogs that define a key twice."""
        seen: set[str] = set()
        for parameter in self.parameters:
            if parameter.key in seen:
                raise ValueError(f"duplicate parameter key: '{parameter.key}'")
            seen.add(parameter.key)
        return self

    def by_key(self) -> dict[str, ParameterDefinition]:
        """Return definitions indexed by key."""
        return {p.key: p for p in self.parameters}


__all__ = ["ParameterCatalogSchema", "ParameterDefinition"]
