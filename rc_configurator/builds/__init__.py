"""Build orchestration module.

This module handles:
- Build requests and in-memory build job records
- Running the external toolchain and streaming its output
- The per-target build state machine
"""

from rc_configurator.builds.models import BuildJob, BuildRequest
from rc_configurator.builds.runner import (
    CancellationTimeout,
    PlatformioToolchain,
    SubprocessToolchain,
    ToolchainAdapter,
    ToolchainExitError,
    ToolchainRun,
    ToolchainSpawnError,
)
from rc_configurator.builds.service import AlreadyBuildingError, BuildOrchestrator

__all__ = [
    "AlreadyBuildingError",
    "BuildJob",
    "BuildOrchestrator",
    "BuildRequest",
    "CancellationTimeout",
    "PlatformioToolchain",
    "SubprocessToolchain",
    "ToolchainAdapter",
    "ToolchainExitError",
    "ToolchainRun",
    "ToolchainSpawnError",
]
