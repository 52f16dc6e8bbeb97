"""Dependencies shared by the route handlers.

Provides the assembled Services to handlers via FastAPI dependency
injection and turns core exceptions into HTTP errors with a
``{"code", "message"}`` detail body. Firmware versions are read from
query parameters here too.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request
from pydantic import ValidationError

from rc_configurator.firmware.models import FirmwareSource
from rc_configurator.services import Services
from rc_configurator.types import FirmwareSourceKind


def get_services(request: Request) -> Services:
    """Get the assembled services from app state.

    Args:
        request: FastAPI request object.

    Returns:
        Services created by the application lifespan.
    """
    services: Any = request.app.state.services
    return services  # type: ignore[no-any-return]


def http_error(status_code: int, error: Exception) -> HTTPException:
    """Build an HTTPException from a core exception carrying a ``code``."""
    return HTTPException(
        status_code=status_code,
        detail={
            "code": getattr(error, "code", "error"),
            "message": str(error),
        },
    )


class InvalidFirmwareSourceError(Exception):
    """Raised when firmware query parameters do not describe a version."""

    def __init__(self, message: str, code: str = "invalid_firmware_source") -> None:
        super().__init__(message)
        self.code = code


def firmware_query(
    kind: FirmwareSourceKind | None = None,
    ref: str | None = None,
    local_path: str | None = None,
) -> FirmwareSource | None:
    """Read an optional firmware version from the query string.

    Without ``kind`` the configured default version is used.

    Raises:
        HTTPException: 422 if the parameters do not form a valid version.
    """
    if kind is None:
        if ref is not None or local_path is not None:
            raise http_error(
                422, InvalidFirmwareSourceError("'ref' and 'local_path' require 'kind'")
            )
        return None
    try:
        return FirmwareSource(kind=kind, ref=ref, local_path=local_path)
    except ValidationError as e:
        message = "; ".join(str(err["msg"]) for err in e.errors())
        raise http_error(422, InvalidFirmwareSourceError(message)) from None
