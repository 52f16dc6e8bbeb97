"""Device catalog module.

This module handles:
- Target and device schemas
- Loading catalogs from YAML/JSON files
- The read-mostly device registry
"""

from rc_configurator.devices.registry import (
    DeviceNotFoundError,
    DeviceRegistry,
    LoadError,
)
from rc_configurator.devices.schema import (
    DeviceCatalogSchema,
    DeviceSchema,
    TargetSchema,
)

__all__ = [
    "DeviceCatalogSchema",
    "DeviceNotFoundError",
    "DeviceRegistry",
    "DeviceSchema",
    "LoadError",
    "TargetSchema",
]
