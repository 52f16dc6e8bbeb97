"""Event models distributed over the event bus.

Events are immutable pydantic models. Producers create them with
``topic``/``sequence`` left at their defaults; the bus stamps both when the
event is published.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from rc_configurator.types import BuildState

DISCOVERY_TOPIC = "discovery"


def build_topic(target: str) -> str:
    """Return the topic carrying build events for a target."""
    return f"build/{target}"


def serial_topic(device_id: str) -> str:
    """Return the topic carrying serial lines for a device."""
    return f"serial/{device_id}"


class BaseEvent(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(frozen=True)

    topic: str = ""
    sequence: int = -1


class BuildOutputLine(BaseEvent):
    """One line of toolchain output.

    Attributes:
        target: Target being built.
        job_id: Build job the line belongs to.
        line: Output-line number within the job, starting at 0.
        text: Line content without the trailing newline.
    """

    kind: Literal["build_output"] = "build_output"
    target: str
    job_id: str
    line: int
    text: str


class BuildStateChanged(BaseEvent):
    """A build moved to a new lifecycle state."""

    kind: Literal["build_state"] = "build_state"
    target: str
    job_id: str
    state: BuildState
    artifact_path: str | None = None
    error_code: str | None = None
    message: str | None = None


class DeviceDiscovered(BaseEvent):
    """A device advertised itself (or changed its advertisement)."""

    kind: Literal["device_discovered"] = "device_discovered"
    device_id: str
    name: str
    address: str | None = None
    port: int | None = None
    target: str | None = None
    version: str | None = None
    device_type: str | None = None
    options: dict[str, str] = Field(default_factory=dict)


class DeviceLost(BaseEvent):
    """A previously discovered device stopped advertising."""

    kind: Literal["device_lost"] = "device_lost"
    device_id: str
    name: str


class SerialLine(BaseEvent):
    """One line received from a device's serial connection."""

    kind: Literal["serial_line"] = "serial_line"
    device_id: str
    text: str


Event = Annotated[
    BuildOutputLine | BuildStateChanged | DeviceDiscovered | DeviceLost | SerialLine,
    Field(discriminator="kind"),
]


__all__ = [
    "DISCOVERY_TOPIC",
    "BaseEvent",
    "BuildOutputLine",
    "BuildStateChanged",
    "DeviceDiscovered",
    "DeviceLost",
    "Event",
    "SerialLine",
    "build_topic",
    "serial_topic",
]
