"""Build endpoints.

- POST /builds - Submit a build
- GET /builds - Latest job of every target
- GET /builds/{target} - Latest job and current state of a target
- POST /builds/{target}/cancel - Request cancellation

Build output and state changes are streamed from /events.
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from pydantic import BaseModel, Field

from rc_configurator.builds.service import AlreadyBuildingError
from rc_configurator.devices.registry import DeviceNotFoundError
from rc_configurator.events.models import build_topic
from rc_configurator.firmware.models import FirmwareSource
from rc_configurator.services import Services
from rc_configurator.types import ArtifactKind, ParameterValue
from web.deps import get_services, http_error

router = APIRouter()


class BuildSubmission(BaseModel):
    """Request body for submitting a build.

    ``firmware`` selects a firmware version; the default tree is built
    without it.
    """

    target: str
    overrides: dict[str, ParameterValue] = Field(default_factory=dict)
    artifact_kind: ArtifactKind = ArtifactKind.BUILD
    firmware: FirmwareSource | None = None


class BuildNotRunningError(Exception):
    """Raised when cancelling a target without a running build."""

    def __init__(self, target: str, code: str = "build_not_running") -> None:
        super().__init__(f"No build is running for {target}")
        self.code = code


@router.post("", status_code=http_status.HTTP_202_ACCEPTED)
async def submit_build_endpoint(
    submission: BuildSubmission,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Submit a build request.

    Returns:
        The accepted job plus the topic its events are published on.

    Raises:
        HTTPException: 404 if the target is unknown, 409 if it is already
            building.
    """
    try:
        job = await services.submit_build(
            submission.target,
            submission.overrides,
            submission.artifact_kind,
            submission.firmware,
        )
    except DeviceNotFoundError as e:
        raise http_error(http_status.HTTP_404_NOT_FOUND, e) from None
    except AlreadyBuildingError as e:
        raise http_error(http_status.HTTP_409_CONFLICT, e) from None
    return {**job.to_dict(), "topic": build_topic(job.target)}


@router.get("")
def list_builds_endpoint(
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    """List the latest job of every target that has built."""
    return [job.to_dict() for job in services.builds.list_jobs()]


@router.get("/{target}")
def get_build_endpoint(
    target: str,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Get the target's state and latest job.

    ``job`` is null when the target has never built.

    Raises:
        HTTPException: If the target is unknown.
    """
    if target not in services.registry:
        raise http_error(http_status.HTTP_404_NOT_FOUND, DeviceNotFoundError(target))
    job = services.builds.get_job(target)
    return {
        "target": target,
        "state": services.builds.state(target).value,
        "job": job.to_dict() if job else None,
    }


@router.post("/{target}/cancel", status_code=http_status.HTTP_202_ACCEPTED)
def cancel_build_endpoint(
    target: str,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Request cancellation of the target's running build.

    The request returns immediately; the cancelled state is published on
    the build topic once the toolchain has stopped.

    Raises:
        HTTPException: If no build is running for the target.
    """
    if not services.cancel_build(target):
        raise http_error(http_status.HTTP_409_CONFLICT, BuildNotRunningError(target))
    return {"target": target, "cancel_requested": True}
