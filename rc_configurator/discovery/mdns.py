"""Live device discovery over multicast DNS.

This module handles:
- Browsing for HTTP service advertisements with zeroconf
- Filtering advertisements by the TXT record ``vendor`` property
- Periodically re-querying known devices to refresh their last-seen time
- Sweeping devices whose advertisements stopped
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from typing import TYPE_CHECKING, Any

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from rc_configurator.discovery.models import DiscoveredDevice
from rc_configurator.discovery.tracker import DeviceTracker

if TYPE_CHECKING:
    from rc_configurator.events.bus import EventBus

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_http._tcp.local."

# Milliseconds to wait for a service info answer
QUERY_TIMEOUT_MS = 3000

# TXT properties mapped onto DiscoveredDevice fields
_KNOWN_PROPERTIES = {"vendor", "target", "version", "type", "device"}


def _decode(value: bytes | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def parse_service_info(
    info: Any, vendor: str | None = None
) -> DiscoveredDevice | None:
    """Build a DiscoveredDevice from a resolved service.

    Args:
        info: zeroconf ServiceInfo (or anything with the same attributes).
        vendor: Required ``vendor`` TXT value; None accepts any service.

    Returns:
        The device, or None if the advertisement is from another vendor.
    """
    properties = {
        _decode(k) or "": _decode(v) or ""
        for k, v in (info.properties or {}).items()
    }
    if vendor is not None and properties.get("vendor") != vendor:
        return None

    addresses = info.parsed_addresses()
    service_name = info.name.removesuffix(f".{info.type}")
    return DiscoveredDevice(
        device_id=info.name,
        name=properties.get("device") or service_name,
        address=addresses[0] if addresses else None,
        port=info.port,
        target=properties.get("target") or None,
        version=properties.get("version") or None,
        device_type=properties.get("type") or None,
        options={k: v for k, v in properties.items() if k not in _KNOWN_PROPERTIES},
    )


class MulticastDnsDiscovery:
    """Discovery backend listening for mDNS advertisements.

    Args:
        bus: Event bus receiving discovery events.
        timeout: Seconds without an answer before a device is lost.
        interval: Seconds between re-queries and expiry sweeps.
        vendor: Required TXT ``vendor`` value.
        service_type: mDNS service type to browse.
    """

    def __init__(
        self,
        bus: EventBus,
        timeout: float = 30.0,
        interval: float = 5.0,
        vendor: str | None = "elrs",
        service_type: str = SERVICE_TYPE,
    ) -> None:
        self.tracker = DeviceTracker(bus, timeout)
        self.interval = interval
        self.vendor = vendor
        self.service_type = service_type
        self._aiozc: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._poller: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()

    async def start(self) -> None:
        """Start browsing and the refresh/sweep loop."""
        if self._aiozc is not None:
            return
        self._aiozc = AsyncZeroconf(ip_version=IPVersion.V4Only)
        self._browser = AsyncServiceBrowser(
            self._aiozc.zeroconf,
            [self.service_type],
            handlers=[self._on_service_state_change],
        )
        self._poller = asyncio.create_task(self._poll(), name="mdns-poll")
        logger.info("mDNS discovery started for %s", self.service_type)

    async def stop(self) -> None:
        """Stop browsing and release the mDNS socket."""
        tasks = [*self._pending, *([self._poller] if self._poller else [])]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._pending.clear()
        self._poller = None
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._aiozc is not None:
            await self._aiozc.async_close()
            self._aiozc = None
        self.tracker.reset()
        logger.info("mDNS discovery stopped")

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change is ServiceStateChange.Removed:
            self.tracker.lost(name)
            return
        task = asyncio.ensure_future(self._query(name))
        self._pending.add(task)
        task.add_done_callback(self._query_done)

    def _query_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Service query failed: %s", error, exc_info=error)

    async def _query(self, name: str) -> None:
        if self._aiozc is None:
            return
        info = AsyncServiceInfo(self.service_type, name)
        if not await info.async_request(self._aiozc.zeroconf, QUERY_TIMEOUT_MS):
            logger.debug("No answer from %s", name)
            return
        device = parse_service_info(info, self.vendor)
        if device is not None:
            self.tracker.seen(device, time.monotonic())

    async def _refresh(self) -> None:
        """Re-query every known device, then sweep the silent ones."""
        for device in self.tracker.devices():
            try:
                await self._query(device.device_id)
            except Exception:
                logger.exception("Refreshing %s failed", device.device_id)
        self.tracker.expire(time.monotonic())

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self._refresh()


__all__ = [
    "QUERY_TIMEOUT_MS",
    "SERVICE_TYPE",
    "MulticastDnsDiscovery",
    "parse_service_info",
]
