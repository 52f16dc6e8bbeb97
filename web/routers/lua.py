"""Radio Lua script endpoint.

- GET /lua - Download the Lua script of a firmware version
"""

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from fastapi.responses import FileResponse

from rc_configurator.firmware.checkout import FirmwareSourceError
from rc_configurator.firmware.lua import LuaScriptNotFoundError
from rc_configurator.firmware.models import FirmwareSource
from rc_configurator.services import Services
from web.deps import firmware_query, get_services, http_error

router = APIRouter()


@router.get("", response_class=FileResponse)
async def get_lua_script_endpoint(
    firmware: FirmwareSource | None = Depends(firmware_query),
    services: Services = Depends(get_services),
) -> FileResponse:
    """Download the Lua script shipped with a firmware version.

    Raises:
        HTTPException: 404 if the version ships no script, 502 if its
            source tree cannot be checked out.
    """
    try:
        script = await services.lua_script(firmware)
    except LuaScriptNotFoundError as e:
        raise http_error(http_status.HTTP_404_NOT_FOUND, e) from None
    except FirmwareSourceError as e:
        raise http_error(http_status.HTTP_502_BAD_GATEWAY, e) from None
    return FileResponse(script, media_type="text/x-lua", filename=script.name)
