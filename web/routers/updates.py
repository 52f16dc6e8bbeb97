"""Release update endpoint."""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi import status as http_status

from rc_configurator.services import Services
from rc_configurator.updates import UpdateCheckError
from web.deps import get_services, http_error

router = APIRouter()


@router.get("")
async def check_updates_endpoint(
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Check the release repository for a newer version.

    Raises:
        HTTPException: If the release lookup fails.
    """
    try:
        info = await services.check_updates()
    except UpdateCheckError as e:
        raise http_error(http_status.HTTP_502_BAD_GATEWAY, e) from None
    return info.to_dict()
