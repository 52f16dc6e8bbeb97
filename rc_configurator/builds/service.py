"""Build orchestration service.

This module provides the build lifecycle API:
- submit(): accept a build request (at most one in-flight job per target)
- cancel(): request cancellation of a running build
- Job and per-target state queries

Each accepted request gets one driving task. The task resolves the
configuration, checks out the requested firmware version, starts the
toolchain, republishes its output on the target's build topic and
publishes the terminal state. Builds for different targets run
concurrently.

Per-target state machine::

    idle --submit--> running --> succeeded | failed | cancelled --> idle
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import suppress
from typing import TYPE_CHECKING

from rc_configurator.builds.models import BuildJob, BuildRequest
from rc_configurator.builds.runner import ToolchainSpawnError
from rc_configurator.events.models import (
    BuildOutputLine,
    BuildStateChanged,
    build_topic,
)
from rc_configurator.firmware.checkout import FirmwareSourceError
from rc_configurator.parameters.source import ConfigurationError
from rc_configurator.types import BuildFailure, BuildState, BuildSuccess

if TYPE_CHECKING:
    from rc_configurator.builds.runner import ToolchainAdapter, ToolchainRun
    from rc_configurator.devices.registry import DeviceRegistry
    from rc_configurator.devices.schema import DeviceSchema
    from rc_configurator.events.bus import EventBus
    from rc_configurator.firmware.checkout import FirmwareCheckout
    from rc_configurator.parameters.source import ConfigurationSource

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Build cancelled"


class AlreadyBuildingError(Exception):
    """Raised when a build is submitted for a target that is not idle."""

    def __init__(self, target: str, job_id: str, code: str = "already_building") -> None:
        super().__init__(f"A build for {target} is already running (job {job_id})")
        self.target = target
        self.job_id = job_id
        self.code = code


class _ActiveBuild:
    """Driving-task bookkeeping for one in-flight job."""

    def __init__(self, job: BuildJob) -> None:
        self.job = job
        self.cancel_requested = asyncio.Event()
        self.task: asyncio.Task[None] | None = None
        self.done = asyncio.Event()


class BuildOrchestrator:
    """Accepts build requests and drives them to a terminal state.

    Args:
        registry: Device registry used to look up targets.
        config_source: Resolves parameters for a build.
        toolchain: Runs the external build.
        bus: Event bus receiving build events.
        firmware: Provides the source tree of requested firmware versions.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        config_source: ConfigurationSource,
        toolchain: ToolchainAdapter,
        bus: EventBus,
        firmware: FirmwareCheckout | None = None,
    ) -> None:
        self.registry = registry
        self.config_source = config_source
        self.toolchain = toolchain
        self.bus = bus
        self.firmware = firmware
        self._lock = threading.Lock()
        self._active: dict[str, _ActiveBuild] = {}
        self._jobs: dict[str, BuildJob] = {}

    async def submit(self, request: BuildRequest) -> BuildJob:
        """Accept a build request and start driving it.

        The target is reserved before this coroutine first suspends, so
        concurrent submissions for one target yield exactly one job.

        Args:
            request: Build request.

        Returns:
            The new BuildJob, already in the running state.

        Raises:
            DeviceNotFoundError: If the target is unknown.
            AlreadyBuildingError: If the target already has a running job.
        """
        device = self.registry.get(request.target)

        with self._lock:
            current = self._active.get(request.target)
            if current is not None:
                raise AlreadyBuildingError(request.target, current.job.job_id)
            job = BuildJob(
                target=request.target,
                artifact_kind=request.artifact_kind,
                firmware=request.firmware,
            )
            active = _ActiveBuild(job)
            self._active[request.target] = active
            self._jobs[request.target] = job

        logger.info("Accepted build %s for %s", job.job_id, job.target)
        self._publish_state(job)
        active.task = asyncio.create_task(
            self._drive(active, device, request), name=f"build-{job.target}"
        )
        return job

    def cancel(self, target: str) -> bool:
        """Request cancellation of the running build for ``target``.

        Returns immediately; the build reaches the cancelled state
        asynchronously.

        Returns:
            True if a running build was signalled, False if none was running.
        """
        active = self._active.get(target)
        if active is None:
            return False
        logger.info("Cancellation requested for build %s", active.job.job_id)
        active.cancel_requested.set()
        return True

    def get_job(self, target: str) -> BuildJob | None:
        """Return the latest job for ``target`` (running or finished)."""
        return self._jobs.get(target)

    def list_jobs(self) -> list[BuildJob]:
        """Return the latest job of every target that has built."""
        return [self._jobs[t] for t in sorted(self._jobs)]

    def state(self, target: str) -> BuildState:
        """Return the target's state: running while a job is in flight, else idle."""
        return BuildState.RUNNING if target in self._active else BuildState.IDLE

    async def wait(self, target: str) -> BuildJob | None:
        """Wait for the running build of ``target`` to finish.

        Returns:
            The finished job, or the latest job if none is running.
        """
        active = self._active.get(target)
        if active is not None:
            await active.done.wait()
            return active.job
        return self._jobs.get(target)

    async def shutdown(self) -> None:
        """Cancel every running build and wait for them to finish."""
        actives = list(self._active.values())
        for active in actives:
            active.cancel_requested.set()
        for active in actives:
            await active.done.wait()

    async def _drive(
        self,
        active: _ActiveBuild,
        device: DeviceSchema,
        request: BuildRequest,
    ) -> None:
        job = active.job
        try:
            result = await self._run(active, device, request)
        except Exception as e:
            logger.exception("Build %s crashed", job.job_id)
            result = BuildFailure(code="internal_error", message=f"Internal error: {e}")
        except asyncio.CancelledError:
            result = BuildFailure(
                code="cancelled", message=CANCELLED_MESSAGE, cancelled=True
            )
            self._finish(active, result)
            raise
        self._finish(active, result)

    async def _run(
        self,
        active: _ActiveBuild,
        device: DeviceSchema,
        request: BuildRequest,
    ) -> BuildSuccess | BuildFailure:
        job = active.job

        resolve = asyncio.ensure_future(
            self.config_source.resolve(device, request.overrides)
        )
        if not await self._race(resolve, active):
            return BuildFailure(code="cancelled", message=CANCELLED_MESSAGE, cancelled=True)
        try:
            job.parameters = resolve.result()
        except ConfigurationError as e:
            logger.warning("Build %s: configuration error: %s", job.job_id, e)
            return BuildFailure(
                code=e.code,
                message=f"Configuration error: {e}",
                details={"keys": e.keys},
            )

        source_dir = None
        if request.firmware is not None:
            if self.firmware is None:
                return BuildFailure(
                    code="firmware_source_unavailable",
                    message="Firmware versions are not available in this setup",
                )
            prepare = asyncio.ensure_future(self.firmware.prepare(request.firmware))
            if not await self._race(prepare, active):
                return BuildFailure(
                    code="cancelled", message=CANCELLED_MESSAGE, cancelled=True
                )
            try:
                source_dir = prepare.result()
            except FirmwareSourceError as e:
                logger.warning("Build %s: %s", job.job_id, e)
                return BuildFailure(code=e.code, message=str(e))

        try:
            run = await self.toolchain.start(
                device, job.parameters, request.artifact_kind, source_dir=source_dir
            )
        except ToolchainSpawnError as e:
            return BuildFailure(code=e.code, message=str(e))

        watcher = asyncio.create_task(self._cancel_on_request(active, run))
        try:
            async for text in run.lines():
                self.bus.publish(
                    build_topic(job.target),
                    BuildOutputLine(
                        target=job.target,
                        job_id=job.job_id,
                        line=job.next_line_number(),
                        text=text,
                    ),
                )
            return await run.wait()
        except BaseException:
            # The toolchain must not outlive the job, whatever ended the loop
            await asyncio.shield(run.cancel(CANCELLED_MESSAGE))
            raise
        finally:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher

    @staticmethod
    async def _race(future: asyncio.Future[object], active: _ActiveBuild) -> bool:
        """Wait for ``future`` unless cancellation is requested first."""
        cancelled = asyncio.ensure_future(active.cancel_requested.wait())
        try:
            await asyncio.wait({future, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if future.done():
            return True
        future.cancel()
        with suppress(asyncio.CancelledError, ConfigurationError, FirmwareSourceError):
            await future
        return False

    @staticmethod
    async def _cancel_on_request(active: _ActiveBuild, run: ToolchainRun) -> None:
        await active.cancel_requested.wait()
        await run.cancel(CANCELLED_MESSAGE)

    def _finish(self, active: _ActiveBuild, result: BuildSuccess | BuildFailure) -> None:
        job = active.job
        if isinstance(result, BuildSuccess):
            job.mark_succeeded(result)
            logger.info("Build %s succeeded: %s", job.job_id, result.artifact_path)
        elif active.cancel_requested.is_set():
            job.mark_cancelled(result)
            logger.info("Build %s cancelled", job.job_id)
        else:
            job.mark_failed(result)
            logger.error("Build %s failed (%s): %s", job.job_id, result.code, result.message)

        self._publish_state(job)
        # Subscribers already hold the terminal event; the target is free again.
        with self._lock:
            if self._active.get(job.target) is active:
                del self._active[job.target]
        active.done.set()

    def _publish_state(self, job: BuildJob) -> None:
        event = BuildStateChanged(target=job.target, job_id=job.job_id, state=job.state)
        if isinstance(job.result, BuildSuccess):
            event = event.model_copy(update={"artifact_path": job.result.artifact_path})
        elif isinstance(job.result, BuildFailure):
            event = event.model_copy(
                update={"error_code": job.result.code, "message": job.result.message}
            )
        self.bus.publish(build_topic(job.target), event)


__all__ = ["AlreadyBuildingError", "BuildOrchestrator"]
