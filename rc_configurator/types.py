"""Shared type definitions for rc_configurator.

This module contains enums and small dataclasses shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class BuildState(str, Enum):
    """Lifecycle state of a build for one target."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether this state ends a build."""
        return self in (BuildState.SUCCEEDED, BuildState.FAILED, BuildState.CANCELLED)


class ArtifactKind(str, Enum):
    """What a build request asks the toolchain to produce."""

    BUILD = "build"
    BUILD_AND_FLASH = "build_and_flash"
    FORCE_FLASH = "force_flash"

    @property
    def flashes(self) -> bool:
        """Whether the toolchain should upload the firmware afterwards."""
        return self is not ArtifactKind.BUILD


class ConnectionType(str, Enum):
    """Ways a device can be connected to for flashing or monitoring."""

    UART = "uart"
    WIFI = "wifi"
    STLINK = "stlink"
    BETAFLIGHT_PASSTHROUGH = "betaflight_passthrough"
    ETX_PASSTHROUGH = "etx_passthrough"


class FirmwareSourceKind(str, Enum):
    """Where the firmware source tree for a build comes from."""

    GIT_TAG = "git_tag"
    GIT_BRANCH = "git_branch"
    GIT_COMMIT = "git_commit"
    LOCAL = "local"

    @property
    def is_git(self) -> bool:
        """Whether the source is fetched from the firmware repository."""
        return self is not FirmwareSourceKind.LOCAL


class ParameterType(str, Enum):
    """Value type of a firmware configuration parameter."""

    BOOLEAN = "boolean"
    TEXT = "text"
    ENUM = "enum"


ParameterValue = str | bool


@dataclass
class BuildSuccess:
    """Terminal result of a toolchain run that produced an artifact."""

    artifact_path: str
    exit_code: int = 0


@dataclass
class BuildFailure:
    """Terminal result of a toolchain run that did not produce an artifact.

    Attributes:
        code: Stable error kind (e.g. 'toolchain_exit').
        message: Human-readable reason suitable for display.
        exit_code: Process exit code when the process ran.
        cancelled: Whether the run ended because of a cancellation request.
    """

    code: str
    message: str
    exit_code: int | None = None
    cancelled: bool = False
    details: dict[str, object] = field(default_factory=dict)


BuildResult = BuildSuccess | BuildFailure


__all__ = [
    "ArtifactKind",
    "BuildFailure",
    "BuildResult",
    "BuildState",
    "BuildSuccess",
    "ConnectionType",
    "FirmwareSourceKind",
    "ParameterType",
    "ParameterValue",
]
