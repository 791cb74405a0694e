from __future__ import annotations

from fastapi import APIRouter, Depends

from inv_app.models import User
from inv_app.schemas import LocationRead
from inv_app.security import require_user_api
from inv_app.services.material_service import MaterialService

from .materials import material_service_dep

router = APIRouter(tags=["locations"])


@router.get("/locations", response_model=list[LocationRead])
def list_locations(
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[LocationRead]:
    return [LocationRead.model_validate(loc) for loc in service.locations()]


@router.get("/available_locations", response_model=list[LocationRead])
def list_available_locations(
    stock_id: str,
    owner: str,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[LocationRead]:
    return [LocationRead.model_validate(loc) for loc in service.available_locations(stock_id, owner)]
