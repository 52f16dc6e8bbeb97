"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and
dependency injection configured. Web routes are thin proxies to the
operations exposed by rc_configurator.services.Services.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rc_configurator import __version__
from rc_configurator.services import Services, build_services
from web.routers import (
    builds,
    config,
    devices,
    events,
    health,
    lua,
    serial,
    targets,
    updates,
)


def create_app(services_factory: Callable[[], Services] | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services_factory: Builds the Services the app serves; defaults to
            assembling them from environment settings.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Assemble services on startup and stop them on shutdown."""
        services = (services_factory or build_services)()
        await services.start()
        app.state.services = services
        try:
            yield
        finally:
            await services.stop()

    application = FastAPI(
        title="RC Configurator API",
        description="HTTP API for building radio-control firmware, streaming "
        "build output, discovering devices, and monitoring serial ports",
        version=__version__,
        lifespan=lifespan,
    )

    # Include routers
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(devices.router, prefix="/devices", tags=["devices"])
    application.include_router(targets.router, prefix="/targets", tags=["targets"])
    application.include_router(builds.router, prefix="/builds", tags=["builds"])
    application.include_router(events.router, prefix="/events", tags=["events"])
    application.include_router(serial.router, prefix="/serial", tags=["serial"])
    application.include_router(lua.router, prefix="/lua", tags=["lua"])
    application.include_router(updates.router, prefix="/updates", tags=["updates"])

    return application


# Create the default application instance
app = create_app()
