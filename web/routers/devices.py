"""Device catalog endpoints.

- GET /devices - List devices
- GET /devices/{target} - Get one device
- GET /devices/{target}/parameters - Parameters the device accepts
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi import status as http_status

from rc_configurator.devices.registry import DeviceNotFoundError
from rc_configurator.parameters.source import ConfigurationError
from rc_configurator.services import Services
from web.deps import get_services, http_error

router = APIRouter()


@router.get("")
def list_devices_endpoint(
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    """List every device in the registry, ordered by target name."""
    return [d.model_dump(mode="json") for d in services.list_devices()]


@router.get("/{target}")
def get_device_endpoint(
    target: str,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Get one device by target name.

    Raises:
        HTTPException: If the device is not found.
    """
    try:
        return services.registry.get(target).model_dump(mode="json")
    except DeviceNotFoundError as e:
        raise http_error(http_status.HTTP_404_NOT_FOUND, e) from None


@router.get("/{target}/parameters")
async def list_parameters_endpoint(
    target: str,
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    """List the parameters a device accepts, with defaults.

    Raises:
        HTTPException: 404 if the device is unknown, 502 if the
            configuration source is unavailable.
    """
    try:
        definitions = await services.list_parameters(target)
    except DeviceNotFoundError as e:
        raise http_error(http_status.HTTP_404_NOT_FOUND, e) from None
    except ConfigurationError as e:
        raise http_error(http_status.HTTP_502_BAD_GATEWAY, e) from None
    return [d.model_dump(mode="json") for d in definitions]
