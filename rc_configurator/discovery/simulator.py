"""Simulated device discovery.

Replays a script of synthetic advertisements through the same tracker the
live backend uses, without touching the network. Expiry sweeps run every
``interval`` seconds of script time, so replaying a script always yields
the same events in the same order.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rc_configurator.discovery.models import DiscoveredDevice
from rc_configurator.discovery.tracker import DeviceTracker

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rc_configurator.events.bus import EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScriptedResponse:
    """An advertisement received ``at`` seconds into the script."""

    at: float
    device: DiscoveredDevice


def _device(
    device_id: str, name: str, address: str, target: str, device_type: str
) -> DiscoveredDevice:
    return DiscoveredDevice(
        device_id=device_id,
        name=name,
        address=address,
        port=80,
        target=target,
        version="3.4.0",
        device_type=device_type,
        options={"vendor": "elrs"},
    )


_TX = _device("elrs_tx._http._tcp.local.", "elrs_tx", "10.0.0.11", "TX_ESP32", "tx")
_RX = _device("elrs_rx._http._tcp.local.", "elrs_rx", "10.0.0.12", "RX_ESP8285", "rx")

DEFAULT_SCRIPT: tuple[ScriptedResponse, ...] = (
    ScriptedResponse(0.0, _TX),
    ScriptedResponse(2.0, _RX),
    ScriptedResponse(10.0, _TX),
    ScriptedResponse(20.0, _TX),
    ScriptedResponse(30.0, _TX),
)


class SimulatedDiscovery:
    """Discovery backend driven by a script.

    Args:
        bus: Event bus receiving discovery events.
        script: Advertisements to replay; defaults to DEFAULT_SCRIPT.
        timeout: Seconds without an advertisement before a device is lost.
        interval: Seconds between expiry sweeps.
        speed: Real-time playback speed factor for ``start``.
        repeat: Restart the script when it ends (``start`` only).
    """

    def __init__(
        self,
        bus: EventBus,
        script: Sequence[ScriptedResponse] | None = None,
        timeout: float = 30.0,
        interval: float = 5.0,
        speed: float = 1.0,
        repeat: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if speed <= 0:
            raise ValueError("speed must be positive")
        self.tracker = DeviceTracker(bus, timeout)
        # sorted() is stable: responses sharing a time keep script order
        self.script = sorted(
            DEFAULT_SCRIPT if script is None else script, key=lambda r: r.at
        )
        self.interval = interval
        self.speed = speed
        self.repeat = repeat
        self._task: asyncio.Task[None] | None = None

    @property
    def end_time(self) -> float:
        """Script time by which every scripted device has expired."""
        last = self.script[-1].at if self.script else 0.0
        return last + self.tracker.timeout + self.interval

    async def replay(self) -> None:
        """Replay the whole script on a virtual clock, without sleeping."""
        await self._play(realtime=False)

    async def start(self) -> None:
        """Replay the script in real time in a background task."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="discovery-simulator")
        logger.info("Simulated discovery started (%d responses)", len(self.script))

    async def stop(self) -> None:
        """Stop playback and forget known devices."""
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self.tracker.reset()
        logger.info("Simulated discovery stopped")

    async def _run(self) -> None:
        while True:
            await self._play(realtime=True)
            if not self.repeat:
                return
            self.tracker.reset()

    async def _play(self, realtime: bool) -> None:
        clock = 0.0
        next_sweep = self.interval

        async def advance(until: float) -> None:
            nonlocal clock, next_sweep
            while next_sweep <= until:
                await self._sleep(next_sweep - clock, realtime)
                clock = next_sweep
                self.tracker.expire(clock)
                next_sweep += self.interval
            await self._sleep(until - clock, realtime)
            clock = until

        for response in self.script:
            await advance(response.at)
            self.tracker.seen(response.device, response.at)
        await advance(self.end_time)

    async def _sleep(self, seconds: float, realtime: bool) -> None:
        if realtime and seconds > 0:
            await asyncio.sleep(seconds / self.speed)


__all__ = ["DEFAULT_SCRIPT", "ScriptedResponse", "SimulatedDiscovery"]
