"""Firmware targets endpoints.

- GET /targets - Devices a firmware version can build
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi import status as http_status

from rc_configurator.firmware.models import FirmwareSource
from rc_configurator.services import Services
from rc_configurator.targets.loader import TargetsError
from web.deps import firmware_query, get_services, http_error

router = APIRouter()


@router.get("")
async def list_targets_endpoint(
    firmware: FirmwareSource | None = Depends(firmware_query),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """List the registry devices the selected firmware version defines.

    The version comes from the ``kind``, ``ref`` and ``local_path`` query
    parameters; the configured default branch is used without them.

    Raises:
        HTTPException: 422 for an invalid version, 502 if the targets
            cannot be loaded.
    """
    firmware = firmware or services.default_firmware()
    try:
        devices = await services.list_targets(firmware)
    except TargetsError as e:
        raise http_error(http_status.HTTP_502_BAD_GATEWAY, e) from None
    return {
        "firmware": firmware.model_dump(mode="json"),
        "devices": [d.model_dump(mode="json") for d in devices],
    }
