"""Build request and build job records.

These live in memory only: a job is kept until the next job for the same
target replaces it.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from rc_configurator.types import (
    ArtifactKind,
    BuildFailure,
    BuildResult,
    BuildState,
    BuildSuccess,
    ParameterValue,
)

if TYPE_CHECKING:
    from rc_configurator.firmware.models import FirmwareSource


@dataclass(frozen=True)
class BuildRequest:
    """A request to build firmware for one target.

    Attributes:
        target: Target name in the device registry.
        overrides: Parameter values overriding the source's defaults.
        artifact_kind: Whether to only build or also flash.
        firmware: Firmware version to build; the toolchain's configured
            tree when None.
    """

    target: str
    overrides: Mapping[str, ParameterValue] = field(default_factory=dict)
    artifact_kind: ArtifactKind = ArtifactKind.BUILD
    firmware: FirmwareSource | None = None


@dataclass
class BuildJob:
    """Live record of one build attempt for one target.

    Attributes:
        job_id: Unique job identifier.
        target: Target being built.
        artifact_kind: Requested output.
        firmware: Requested firmware version, if any.
        state: Current lifecycle state.
        started_at: When the job was accepted.
        finished_at: When the job reached a terminal state.
        line_count: Number of output lines published so far; the next
            line's number.
        parameters: Resolved parameters, once resolution succeeded.
        result: Terminal result.
    """

    target: str
    artifact_kind: ArtifactKind = ArtifactKind.BUILD
    firmware: FirmwareSource | None = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: BuildState = BuildState.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    line_count: int = 0
    parameters: dict[str, ParameterValue] | None = None
    result: BuildResult | None = None

    @property
    def is_running(self) -> bool:
        """Whether the job is still in flight."""
        return self.state is BuildState.RUNNING

    def next_line_number(self) -> int:
        """Return the number for the next output line and advance."""
        number = self.line_count
        self.line_count += 1
        return number

    def mark_succeeded(self, result: BuildSuccess) -> None:
        """Mark this job as succeeded."""
        self.state = BuildState.SUCCEEDED
        self.result = result
        self.finished_at = datetime.now(timezone.utc)

    def mark_failed(self, result: BuildFailure) -> None:
        """Mark this job as failed."""
        self.state = BuildState.FAILED
        self.result = result
        self.finished_at = datetime.now(timezone.utc)

    def mark_cancelled(self, result: BuildFailure) -> None:
        """Mark this job as cancelled."""
        self.state = BuildState.CANCELLED
        self.result = result
        self.finished_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data: dict[str, Any] = {
            "job_id": self.job_id,
            "target": self.target,
            "artifact_kind": self.artifact_kind.value,
            "firmware": self.firmware.model_dump(mode="json") if self.firmware else None,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "line_count": self.line_count,
            "parameters": self.parameters,
            "artifact_path": None,
            "error_code": None,
            "message": None,
        }
        if isinstance(self.result, BuildSuccess):
            data["artifact_path"] = self.result.artifact_path
        elif isinstance(self.result, BuildFailure):
            data["error_code"] = self.result.code
            data["message"] = self.result.message
        return data

    def __repr__(self) -> str:
        """Return string representation of BuildJob."""
        return (
            f"<BuildJob(job_id='{self.job_id}', target='{self.target}', "
            f"state='{self.state.value}', lines={self.line_count})>"
        )


__all__ = ["BuildJob", "BuildRequest"]
