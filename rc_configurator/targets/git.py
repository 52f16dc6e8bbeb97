"""Repository-backed targets loader.

Checks out each requested version of the targets repository into its own
directory under the cache directory and reads the targets document from
the checkout.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from rc_configurator.parameters.git import fetch_ref
from rc_configurator.parameters.source import ConfigurationError
from rc_configurator.targets.loader import (
    TargetsError,
    TargetsListLoader,
    read_targets_file,
)

if TYPE_CHECKING:
    from rc_configurator.firmware.models import FirmwareSource

logger = logging.getLogger(__name__)


class GitTargetsLoader(TargetsListLoader):
    """Targets loader reading versions of a git repository.

    Args:
        repository: Clone URL (or local path) of the targets repository.
        cache_dir: Directory holding one checkout per version.
        git_path: git executable.
        timeout: Timeout for each git invocation in seconds.
    """

    def __init__(
        self,
        repository: str,
        cache_dir: Path,
        git_path: str = "git",
        timeout: int | None = 300,
    ) -> None:
        super().__init__()
        self.repository = repository
        self.cache_dir = cache_dir
        self.git_path = git_path
        self.timeout = timeout

    def _checkout(self, source: FirmwareSource) -> list[str]:
        assert source.ref is not None
        dest = self.cache_dir / source.checkout_name
        try:
            fetch_ref(
                self.repository,
                dest,
                source.ref,
                git_path=self.git_path,
                timeout=self.timeout,
            )
        except ConfigurationError as e:
            raise TargetsError(f"Failed to load targets for {source}: {e}") from e
        return read_targets_file(dest)

    async def _fetch_targets(self, source: FirmwareSource) -> list[str]:
        return await asyncio.to_thread(self._checkout, source)


__all__ = ["GitTargetsLoader"]
