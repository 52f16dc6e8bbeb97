"""Locating the radio Lua script shipped with a firmware version."""

from __future__ import annotations

import logging
from pathlib import Path

from rc_configurator.firmware.checkout import FirmwareCheckout
from rc_configurator.firmware.models import FirmwareSource

logger = logging.getLogger(__name__)

LUA_DIR = "lua"

# Newest first; a tree ships one of them
LUA_SCRIPT_NAMES = ("elrsV3.lua", "elrsV2.lua")


class LuaScriptNotFoundError(Exception):
    """Raised when a firmware tree ships no radio Lua script."""

    def __init__(self, source: FirmwareSource, code: str = "lua_script_not_found") -> None:
        super().__init__(f"No Lua script in firmware {source}")
        self.source = source
        self.code = code


def find_lua_script(project_dir: Path) -> Path | None:
    """Return the Lua script in a PlatformIO project directory, if any."""
    for name in LUA_SCRIPT_NAMES:
        path = project_dir / LUA_DIR / name
        if path.is_file():
            return path
    return None


class LuaScriptResolver:
    """Finds the Lua script matching a firmware version.

    Args:
        checkout: Provides firmware source trees.
    """

    def __init__(self, checkout: FirmwareCheckout) -> None:
        self.checkout = checkout

    async def resolve(self, source: FirmwareSource) -> Path:
        """Return the path of the Lua script for ``source``.

        Raises:
            FirmwareSourceError: If the source tree is unavailable.
            LuaScriptNotFoundError: If the tree has no Lua script.
        """
        project_dir = await self.checkout.prepare(source)
        path = find_lua_script(project_dir)
        if path is None:
            raise LuaScriptNotFoundError(source)
        logger.info("Lua script for %s: %s", source, path)
        return path


__all__ = [
    "LUA_SCRIPT_NAMES",
    "LuaScriptNotFoundError",
    "LuaScriptResolver",
    "find_lua_script",
]
