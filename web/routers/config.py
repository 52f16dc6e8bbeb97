"""Configuration endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from rc_configurator.services import Services
from web.deps import get_services

router = APIRouter()


@router.get("")
def get_config(services: Services = Depends(get_services)) -> dict[str, Any]:
    """Get the effective configuration the services were assembled with."""
    return services.settings.model_dump(mode="json")
