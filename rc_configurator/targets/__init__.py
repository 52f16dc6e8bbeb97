"""Firmware targets module.

This module handles:
- The targets loader contract
- Narrowing the device registry to the targets a firmware version defines
- Repository-backed and endpoint-backed loaders
"""

from rc_configurator.targets.git import GitTargetsLoader
from rc_configurator.targets.http import HttpTargetsLoader
from rc_configurator.targets.loader import (
    TargetsError,
    TargetsListLoader,
    TargetsLoader,
    parse_targets,
)

__all__ = [
    "GitTargetsLoader",
    "HttpTargetsLoader",
    "TargetsError",
    "TargetsListLoader",
    "TargetsLoader",
    "parse_targets",
]
