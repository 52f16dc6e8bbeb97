"""Serial monitor endpoints.

- POST /serial/{device_id}/open - Open a connection
- POST /serial/{device_id}/write - Write to an open connection
- POST /serial/{device_id}/close - Close a connection

Received lines are streamed from /events on ``serial/{device_id}``.
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from pydantic import BaseModel, Field

from rc_configurator.events.models import serial_topic
from rc_configurator.serial_monitor.service import (
    DEFAULT_BAUDRATE,
    AlreadyOpenError,
    NotOpenError,
    SerialOpenError,
    SerialWriteError,
)
from rc_configurator.services import Services
from web.deps import get_services, http_error

router = APIRouter()


class SerialOpenRequest(BaseModel):
    """Request body for opening a serial connection."""

    port: str = Field(..., min_length=1)
    baudrate: int = Field(DEFAULT_BAUDRATE, gt=0)


class SerialWriteRequest(BaseModel):
    """Request body for writing to a serial connection."""

    data: str


@router.post("/{device_id}/open")
async def open_serial_endpoint(
    device_id: str,
    request: SerialOpenRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Open a serial connection and start publishing its lines.

    Raises:
        HTTPException: 409 if already open, 502 if the port cannot be opened.
    """
    try:
        await services.open_serial(device_id, request.port, request.baudrate)
    except AlreadyOpenError as e:
        raise http_error(http_status.HTTP_409_CONFLICT, e) from None
    except SerialOpenError as e:
        raise http_error(http_status.HTTP_502_BAD_GATEWAY, e) from None
    return {"device_id": device_id, "open": True, "topic": serial_topic(device_id)}


@router.post("/{device_id}/write")
async def write_serial_endpoint(
    device_id: str,
    request: SerialWriteRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Write UTF-8 text to an open connection.

    Raises:
        HTTPException: 409 if the device has no open connection, 502 if the
            port rejects the write.
    """
    try:
        written = await services.write_serial(device_id, request.data.encode("utf-8"))
    except NotOpenError as e:
        raise http_error(http_status.HTTP_409_CONFLICT, e) from None
    except SerialWriteError as e:
        raise http_error(http_status.HTTP_502_BAD_GATEWAY, e) from None
    return {"device_id": device_id, "written": written}


@router.post("/{device_id}/close")
async def close_serial_endpoint(
    device_id: str,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Close a connection. Closing a closed connection is not an error."""
    closed = await services.close_serial(device_id)
    return {"device_id": device_id, "closed": closed}
