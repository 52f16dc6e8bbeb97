"""Router modules for FastAPI web API."""

from web.routers import builds, config, devices, events, health, serial, updates

__all__ = ["builds", "config", "devices", "events", "health", "serial", "updates"]
