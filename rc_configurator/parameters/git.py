"""Repository-backed configuration source.

This module handles:
- Cloning the parameter repository into a local cache directory
- Fetching and checking out the configured ref on later refreshes
- Listing branches and tags available on the remote
- Shallow checkouts of an arbitrary ref, shared with the firmware and
  targets loaders
- Reading the parameter catalog from the checkout

Git is driven through its command-line executable.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Any

import yaml

from rc_configurator.devices.io import load_mapping
from rc_configurator.parameters.source import (
    CatalogConfigurationSource,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

CATALOG_FILENAMES = ("parameters.yaml", "parameters.yml", "parameters.json")


def run_git(
    args: list[str],
    cwd: Path | None = None,
    git_path: str = "git",
    timeout: int | None = None,
) -> str:
    """Run a git command and return its stdout.

    Raises:
        ConfigurationError: With code ``source_unavailable`` if git cannot
            be started, times out, or exits non-zero.
    """
    cmd = [git_path, *args]
    logger.debug("Executing: %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as e:
        raise ConfigurationError(
            f"git {args[0]} timed out after {timeout}s",
            code="source_unavailable",
        ) from e
    except subprocess.CalledProcessError as e:
        raise ConfigurationError(
            f"git {args[0]} failed: {e.stderr.strip()}",
            code="source_unavailable",
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to run git: {e}",
            code="source_unavailable",
        ) from e
    return result.stdout


def parse_ls_remote(output: str) -> dict[str, list[str]]:
    """Parse ``git ls-remote --heads --tags`` output.

    Returns:
        ``{"branches": [...], "tags": [...]}`` sorted by name. Peeled tag
        entries (``^{}``) are folded into their tag.
    """
    branches: set[str] = set()
    tags: set[str] = set()
    for line in output.splitlines():
        parts = line.split("\t", maxsplit=1)
        if len(parts) != 2:
            continue
        ref = parts[1].strip()
        if ref.startswith("refs/heads/"):
            branches.add(ref.removeprefix("refs/heads/"))
        elif ref.startswith("refs/tags/"):
            tags.add(ref.removeprefix("refs/tags/").removesuffix("^{}"))
    return {"branches": sorted(branches), "tags": sorted(tags)}


def fetch_ref(
    repository: str,
    dest: Path,
    ref: str,
    git_path: str = "git",
    timeout: int | None = None,
) -> Path:
    """Check out a shallow copy of ``ref`` from ``repository`` into ``dest``.

    ``ref`` may be a branch, a tag or a commit the remote serves. An
    existing checkout in ``dest`` is updated in place.

    Returns:
        ``dest``.

    Raises:
        ConfigurationError: With code ``source_unavailable`` if a git
            step fails.
    """
    if not (dest / ".git").is_dir():
        logger.info("Initializing checkout of %s in %s", repository, dest)
        dest.mkdir(parents=True, exist_ok=True)
        run_git(["init", "--quiet"], cwd=dest, git_path=git_path, timeout=timeout)
        run_git(
            ["remote", "add", "origin", repository],
            cwd=dest,
            git_path=git_path,
            timeout=timeout,
        )
    logger.info("Fetching %s from %s", ref, repository)
    run_git(
        ["fetch", "--depth", "1", "origin", ref],
        cwd=dest,
        git_path=git_path,
        timeout=timeout,
    )
    run_git(
        ["checkout", "--force", "FETCH_HEAD"], cwd=dest, git_path=git_path, timeout=timeout
    )
    return dest


class GitConfigurationSource(CatalogConfigurationSource):
    """Configuration source reading a catalog from a git checkout.

    Args:
        repository: Clone URL (or local path) of the parameter repository.
        cache_dir: Directory holding the local checkout.
        ref: Branch or tag to check out.
        git_path: git executable.
        timeout: Timeout for each git invocation in seconds.
    """

    def __init__(
        self,
        repository: str,
        cache_dir: Path,
        ref: str = "master",
        git_path: str = "git",
        timeout: int | None = 300,
    ) -> None:
        super().__init__()
        self.repository = repository
        self.cache_dir = cache_dir
        self.ref = ref
        self.git_path = git_path
        self.timeout = timeout

    def _git(self, args: list[str], cwd: Path | None = None) -> str:
        return run_git(args, cwd=cwd, git_path=self.git_path, timeout=self.timeout)

    def sync(self) -> Path:
        """Clone or update the checkout of ``ref``.

        Returns:
            Path to the checkout.
        """
        if (self.cache_dir / ".git").is_dir():
            logger.info("Updating %s to %s", self.cache_dir, self.ref)
            self._git(["fetch", "--depth", "1", "origin", self.ref], cwd=self.cache_dir)
            self._git(["checkout", "--force", "FETCH_HEAD"], cwd=self.cache_dir)
        else:
            logger.info("Cloning %s (%s) into %s", self.repository, self.ref, self.cache_dir)
            self.cache_dir.parent.mkdir(parents=True, exist_ok=True)
            self._git(
                [
                    "clone",
                    "--depth",
                    "1",
                    "--branch",
                    self.ref,
                    self.repository,
                    str(self.cache_dir),
                ]
            )
        return self.cache_dir

    def read_catalog(self, checkout: Path) -> dict[str, Any]:
        """Read the catalog document from a checkout."""
        for filename in CATALOG_FILENAMES:
            path = checkout / filename
            if path.is_file():
                try:
                    return load_mapping(path)
                except (OSError, yaml.YAMLError, ValueError) as e:
                    raise ConfigurationError(
                        f"Failed to read {path}: {e}", code="invalid_catalog"
                    ) from e
        raise ConfigurationError(
            f"No parameter catalog in {checkout} (looked for {', '.join(CATALOG_FILENAMES)})",
            code="source_unavailable",
        )

    async def _fetch_catalog(self) -> dict[str, Any]:
        checkout = await asyncio.to_thread(self.sync)
        return self.read_catalog(checkout)

    async def list_refs(self) -> dict[str, list[str]]:
        """List branches and tags available on the remote."""
        output = await asyncio.to_thread(
            self._git, ["ls-remote", "--heads", "--tags", self.repository]
        )
        return parse_ls_remote(output)


__all__ = ["GitConfigurationSource", "fetch_ref", "parse_ls_remote", "run_git"]
