"""Firmware source trees for builds.

This module handles:
- Checking out a tag, branch or commit of the firmware repository, one
  directory per version under the firmwares directory
- Serializing git work on the same checkout
- Accepting local source trees as they are
- Locating the PlatformIO project inside a source tree
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path

from rc_configurator.firmware.models import FirmwareSource
from rc_configurator.parameters.git import fetch_ref
from rc_configurator.parameters.source import ConfigurationError

logger = logging.getLogger(__name__)


class FirmwareSourceError(Exception):
    """Raised when a firmware source tree cannot be made available."""

    def __init__(self, message: str, code: str = "firmware_source_unavailable") -> None:
        super().__init__(message)
        self.code = code


class FirmwareCheckout:
    """Provides the source tree of a firmware version.

    Args:
        repository: Clone URL (or local path) of the firmware repository.
        firmwares_dir: Directory holding one checkout per version.
        project_subdir: Directory inside a source tree holding
            ``platformio.ini``; the tree root is used when it is absent.
        git_path: git executable.
        timeout: Timeout for each git invocation in seconds.
    """

    def __init__(
        self,
        repository: str,
        firmwares_dir: Path,
        project_subdir: str = "src",
        git_path: str = "git",
        timeout: int | None = 300,
    ) -> None:
        self.repository = repository
        self.firmwares_dir = firmwares_dir
        self.project_subdir = project_subdir
        self.git_path = git_path
        self.timeout = timeout
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())

    def project_dir(self, root: Path) -> Path:
        """Return the PlatformIO project directory inside ``root``."""
        if self.project_subdir:
            candidate = root / self.project_subdir
            if candidate.is_dir():
                return candidate
        return root

    def source_root(self, source: FirmwareSource) -> Path:
        """Return where the tree for ``source`` lives (or will live)."""
        if source.local_path is not None:
            return source.local_path
        return self.firmwares_dir / source.checkout_name

    def sync(self, source: FirmwareSource) -> Path:
        """Make the tree for ``source`` available.

        Git versions are fetched into their own checkout, so builds of
        different versions do not disturb each other.

        Returns:
            The source tree root.

        Raises:
            FirmwareSourceError: If a local tree does not exist or a git
                step fails.
        """
        root = self.source_root(source)
        if source.local_path is not None:
            if not root.is_dir():
                raise FirmwareSourceError(f"Local firmware source not found: {root}")
            return root

        assert source.ref is not None
        with self._lock_for(source.checkout_name):
            try:
                fetch_ref(
                    self.repository,
                    root,
                    source.ref,
                    git_path=self.git_path,
                    timeout=self.timeout,
                )
            except ConfigurationError as e:
                raise FirmwareSourceError(
                    f"Failed to check out firmware {source}: {e}"
                ) from e
        logger.info("Firmware %s ready in %s", source, root)
        return root

    async def prepare(self, source: FirmwareSource) -> Path:
        """Make ``source`` available and return its PlatformIO project dir.

        Raises:
            FirmwareSourceError: If the tree cannot be made available.
        """
        root = await asyncio.to_thread(self.sync, source)
        return self.project_dir(root)


__all__ = ["FirmwareCheckout", "FirmwareSourceError"]
