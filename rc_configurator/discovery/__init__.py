"""Device discovery module.

This module handles:
- Last-seen tracking and discovery event publication
- Live discovery over multicast DNS
- Scripted discovery simulation
"""

from rc_configurator.discovery.mdns import MulticastDnsDiscovery
from rc_configurator.discovery.models import DiscoveredDevice, DiscoveryService
from rc_configurator.discovery.simulator import (
    DEFAULT_SCRIPT,
    ScriptedResponse,
    SimulatedDiscovery,
)
from rc_configurator.discovery.tracker import DeviceTracker

__all__ = [
    "DEFAULT_SCRIPT",
    "DeviceTracker",
    "DiscoveredDevice",
    "DiscoveryService",
    "MulticastDnsDiscovery",
    "ScriptedResponse",
    "SimulatedDiscovery",
]
