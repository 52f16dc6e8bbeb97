"""Toolchain runner for executing firmware builds.

This module handles:
- Composing PlatformIO commands and build flags from resolved parameters
- Spawning the toolchain as an asyncio subprocess in its own process group
- Streaming merged stdout/stderr line by line
- Translating the exit status into exactly one terminal result
- Cancellation: soft stop, grace period, then forced kill
- Enforcing an overall invocation deadline
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import sys
from collections import deque
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from rc_configurator.types import (
    ArtifactKind,
    BuildFailure,
    BuildResult,
    BuildSuccess,
    ParameterValue,
)

if TYPE_CHECKING:
    from rc_configurator.devices.schema import DeviceSchema

logger = logging.getLogger(__name__)

# asyncio StreamReader buffer limit; longer lines are read in chunks
STREAM_LIMIT = 1024 * 1024

# Output lines kept for failure diagnostics
OUTPUT_TAIL_LINES = 20

_POSIX = sys.platform != "win32"


class ToolchainSpawnError(Exception):
    """Raised when the toolchain process cannot be started."""

    def __init__(self, message: str, code: str = "toolchain_spawn") -> None:
        super().__init__(message)
        self.code = code


class ToolchainExitError(Exception):
    """Describes a toolchain process that ran and reported failure."""

    def __init__(
        self,
        exit_code: int,
        command: str,
        code: str = "toolchain_exit",
    ) -> None:
        super().__init__(f"Toolchain exited with code {exit_code}")
        self.exit_code = exit_code
        self.command = command
        self.code = code


class CancellationTimeout(Exception):
    """Describes a process that outlived its stop grace period."""

    def __init__(
        self, pid: int, grace_period: float, code: str = "cancellation_timeout"
    ) -> None:
        super().__init__(
            f"Process {pid} did not stop within {grace_period:g}s; killing it"
        )
        self.pid = pid
        self.grace_period = grace_period
        self.code = code


async def read_line(stream: asyncio.StreamReader) -> bytes:
    """Read one line of any length from ``stream``.

    Lines longer than the reader's buffer limit are collected in chunks
    instead of failing. Returns ``b""`` at end of stream; a final line
    without a newline is returned as is.
    """
    chunks: list[bytes] = []
    while True:
        try:
            chunks.append(await stream.readuntil(b"\n"))
            break
        except asyncio.LimitOverrunError as e:
            chunks.append(await stream.readexactly(e.consumed))
        except asyncio.IncompleteReadError as e:
            chunks.append(e.partial)
            break
    return b"".join(chunks)


class ToolchainRun(Protocol):
    """A started toolchain invocation."""

    def lines(self) -> AsyncIterator[str]:
        """Yield output lines in emission order; ends when the process exits."""
        ...

    async def wait(self) -> BuildResult:
        """Wait for the process and return its terminal result."""
        ...

    async def cancel(self, reason: str = "Build cancelled") -> None:
        """Stop the process (soft stop, then forced kill)."""
        ...


class ToolchainAdapter(Protocol):
    """Capability the build orchestrator drives."""

    async def start(
        self,
        device: DeviceSchema,
        parameters: Mapping[str, ParameterValue],
        kind: ArtifactKind,
        source_dir: Path | None = None,
    ) -> ToolchainRun:
        """Start building ``device`` with ``parameters``.

        Args:
            source_dir: Firmware project to build in; the adapter's own
                directory when None.

        Raises:
            ToolchainSpawnError: If the toolchain cannot be started.
        """
        ...


class ProcessRun:
    """A running toolchain subprocess.

    Attributes:
        command: The command line, for logs and diagnostics.
        grace_period: Seconds between soft stop and forced kill.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        artifact_path: Path,
        grace_period: float,
        timeout: float | None = None,
    ) -> None:
        self.command = command
        self.artifact_path = artifact_path
        self.grace_period = grace_period
        self._process = process
        self._tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        self._result: BuildResult | None = None
        self._stop_reason: str | None = None
        self._stop_code = "cancelled"
        self._forced = False
        self._watchdog: asyncio.Task[None] | None = None
        if timeout is not None:
            self._watchdog = asyncio.create_task(self._enforce_deadline(timeout))

    @property
    def pid(self) -> int:
        """Process id of the toolchain."""
        return self._process.pid

    async def _enforce_deadline(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        logger.error("Toolchain exceeded %gs, stopping it", timeout)
        await self._stop(f"Build timed out after {timeout:g} seconds", "toolchain_timeout")

    async def lines(self) -> AsyncIterator[str]:
        """Yield decoded output lines until the process closes its output."""
        stdout = self._process.stdout
        if stdout is None:
            return
        while True:
            raw = await read_line(stdout)
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            self._tail.append(line)
            yield line

    async def wait(self) -> BuildResult:
        """Wait for the process and translate its exit status.

        Returns:
            BuildSuccess with the artifact path, or BuildFailure.
        """
        if self._result is not None:
            return self._result

        exit_code = await self._process.wait()
        if self._watchdog is not None and not self._watchdog.done():
            self._watchdog.cancel()

        if self._stop_reason is not None:
            message = self._stop_reason
            if self._forced:
                message += f" (forced kill after {self.grace_period:g}s)"
            self._result = BuildFailure(
                code=self._stop_code,
                message=message,
                exit_code=exit_code,
                cancelled=True,
                details={"forced": self._forced},
            )
        elif exit_code == 0:
            if self.artifact_path.exists():
                self._result = BuildSuccess(artifact_path=str(self.artifact_path))
            else:
                self._result = BuildFailure(
                    code="artifact_missing",
                    message=f"Toolchain succeeded but {self.artifact_path} was not produced",
                    exit_code=exit_code,
                )
        else:
            error = ToolchainExitError(exit_code, self.command)
            self._result = BuildFailure(
                code=error.code,
                message=str(error),
                exit_code=exit_code,
                details={"output_tail": list(self._tail)},
            )
        logger.info("Toolchain %d finished: %s", self.pid, self._result)
        return self._result

    async def cancel(self, reason: str = "Build cancelled") -> None:
        """Stop the process; returns once it has exited."""
        await self._stop(reason, "cancelled")

    async def _stop(self, reason: str, code: str) -> None:
        if self._process.returncode is not None or self._stop_reason is not None:
            return
        self._stop_reason = reason
        self._stop_code = code
        self._signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(asyncio.shield(self._process.wait()), self.grace_period)
        except TimeoutError:
            logger.warning("%s", CancellationTimeout(self.pid, self.grace_period))
            self._forced = True
            self._signal(signal.SIGKILL if _POSIX else signal.SIGTERM)
            await self._process.wait()

    def _signal(self, sig: int) -> None:
        if self._process.returncode is not None:
            return
        try:
            if _POSIX:
                # The toolchain runs in its own session; signal the whole group.
                os.killpg(self._process.pid, sig)
            elif sig == signal.SIGTERM and not self._forced:
                self._process.terminate()
            else:
                self._process.kill()
        except ProcessLookupError:
            logger.debug("Process %d already gone", self._process.pid)


class SubprocessToolchain:
    """Toolchain adapter running one external command per build.

    Subclasses compose the command and name the artifact it produces.

    Args:
        cwd: Working directory for the command.
        env_override: Environment variables added to the current environment.
        grace_period: Seconds between soft stop and forced kill.
        timeout: Ceiling for one invocation in seconds (None = no limit).
    """

    def __init__(
        self,
        cwd: Path | None = None,
        env_override: Mapping[str, str] | None = None,
        grace_period: float = 10.0,
        timeout: float | None = None,
    ) -> None:
        self.cwd = cwd
        self.env_override = dict(env_override or {})
        self.grace_period = grace_period
        self.timeout = timeout

    def compose_command(
        self,
        device: DeviceSchema,
        parameters: Mapping[str, ParameterValue],
        kind: ArtifactKind,
    ) -> list[str]:
        """Return the command line for a build."""
        raise NotImplementedError

    def compose_env(
        self,
        device: DeviceSchema,
        parameters: Mapping[str, ParameterValue],
        kind: ArtifactKind,
    ) -> dict[str, str]:
        """Return extra environment variables for a build."""
        return {}

    def artifact_path(
        self, device: DeviceSchema, kind: ArtifactKind, cwd: Path | None = None
    ) -> Path:
        """Return where the firmware binary will be written when run in ``cwd``."""
        raise NotImplementedError

    async def start(
        self,
        device: DeviceSchema,
        parameters: Mapping[str, ParameterValue],
        kind: ArtifactKind,
        source_dir: Path | None = None,
    ) -> ProcessRun:
        """Spawn the toolchain for ``device``, in ``source_dir`` if given.

        Raises:
            ToolchainSpawnError: If the process cannot be started.
        """
        cmd = self.compose_command(device, parameters, kind)
        cmd_str = shlex.join(cmd)
        cwd = source_dir or self.cwd
        env = dict(os.environ)
        env.update(self.env_override)
        env.update(self.compose_env(device, parameters, kind))

        logger.info("Executing build: %s", cmd_str)
        logger.info("Working directory: %s", cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=_POSIX,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            message = f"Failed to start toolchain: {e}"
            logger.error(message)
            raise ToolchainSpawnError(message) from e

        return ProcessRun(
            process,
            command=cmd_str,
            artifact_path=self.artifact_path(device, kind, cwd),
            grace_period=self.grace_period,
            timeout=self.timeout,
        )


def compose_build_flags(parameters: Mapping[str, ParameterValue]) -> str:
    """Compose the PLATFORMIO_BUILD_FLAGS value from resolved parameters.

    Enabled booleans become ``-DKEY``; disabled booleans are omitted; text
    values become ``-DKEY=value``.
    """
    flags: list[str] = []
    for key, value in parameters.items():
        if value is True:
            flags.append(f"-D{key}")
        elif value is False:
            continue
        else:
            flags.append(f"-D{key}={value}")
    return shlex.join(flags)


class PlatformioToolchain(SubprocessToolchain):
    """Builds (and optionally uploads) firmware with PlatformIO.

    Args:
        firmware_dir: Firmware source tree containing ``platformio.ini``.
        platformio_path: PlatformIO executable.
    """

    def __init__(
        self,
        firmware_dir: Path,
        platformio_path: str = "platformio",
        env_override: Mapping[str, str] | None = None,
        grace_period: float = 10.0,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            cwd=firmware_dir,
            env_override=env_override,
            grace_period=grace_period,
            timeout=timeout,
        )
        self.firmware_dir = firmware_dir
        self.platformio_path = platformio_path

    def compose_command(
        self,
        device: DeviceSchema,
        parameters: Mapping[str, ParameterValue],
        kind: ArtifactKind,
    ) -> list[str]:
        """Compose the ``platformio run`` command for a target."""
        cmd = [
            self.platformio_path,
            "run",
            "--environment",
            device.target.build_environment,
        ]
        if kind.flashes:
            cmd.extend(["--target", "upload"])
        return cmd

    def compose_env(
        self,
        device: DeviceSchema,
        parameters: Mapping[str, ParameterValue],
        kind: ArtifactKind,
    ) -> dict[str, str]:
        """Pass resolved parameters as preprocessor flags."""
        flags = compose_build_flags(parameters)
        return {"PLATFORMIO_BUILD_FLAGS": flags} if flags else {}

    def artifact_path(
        self, device: DeviceSchema, kind: ArtifactKind, cwd: Path | None = None
    ) -> Path:
        """Return ``.pio/build/<env>/firmware.bin`` in the firmware tree."""
        return (
            (cwd or self.firmware_dir)
            / ".pio"
            / "build"
            / device.target.build_environment
            / "firmware.bin"
        )


__all__ = [
    "CancellationTimeout",
    "PlatformioToolchain",
    "ProcessRun",
    "SubprocessToolchain",
    "ToolchainAdapter",
    "ToolchainExitError",
    "ToolchainRun",
    "ToolchainSpawnError",
    "compose_build_flags",
    "read_line",
]
