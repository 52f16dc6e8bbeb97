"""Firmware source module.

This module handles:
- Describing firmware versions (tag, branch, commit or local tree)
- Checking out the source tree a build runs in
- Locating the radio Lua script shipped with a version
"""

from rc_configurator.firmware.checkout import FirmwareCheckout, FirmwareSourceError
from rc_configurator.firmware.lua import LuaScriptNotFoundError, LuaScriptResolver
from rc_configurator.firmware.models import FirmwareSource

__all__ = [
    "FirmwareCheckout",
    "FirmwareSource",
    "FirmwareSourceError",
    "LuaScriptNotFoundError",
    "LuaScriptResolver",
]
