from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from inv_app.audit import log_event
from inv_app.models import User
from inv_app.schemas import IncomingMaterialCounts, IncomingMaterialCreate, IncomingMaterialRead
from inv_app.security import require_user_api
from inv_app.services.material_service import MaterialService

from .materials import material_service_dep

router = APIRouter(prefix="/incoming_materials", tags=["incoming"])


@router.post("", response_model=IncomingMaterialRead)
def send_material(
    payload: IncomingMaterialCreate,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> IncomingMaterialRead:
    if payload.user_id is None:
        payload = payload.model_copy(update={"user_id": user.id})
    created = service.send(payload)
    log_event(
        service._db,
        user,
        action="incoming_create",
        entity_type="incoming_material",
        entity_id=str(created.id),
        detail={"stock_id": created.stock_id, "quantity": created.quantity},
    )
    return IncomingMaterialRead.model_validate(created)


@router.get("", response_model=list[IncomingMaterialRead])
def list_incoming(
    shipping_id: Optional[int] = None,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[IncomingMaterialRead]:
    return [IncomingMaterialRead.model_validate(m) for m in service.list_incoming(shipping_id)]


@router.get("/count", response_model=IncomingMaterialCounts)
def count_incoming(
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> IncomingMaterialCounts:
    return service.incoming_counts()


@router.put("/{shipping_id}", response_model=IncomingMaterialRead)
def update_incoming(
    shipping_id: int,
    payload: IncomingMaterialCreate,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> IncomingMaterialRead:
    updated = service.update_incoming(shipping_id, payload)
    log_event(
        service._db,
        user,
        action="incoming_update",
        entity_type="incoming_material",
        entity_id=str(shipping_id),
        detail={"stock_id": updated.stock_id, "quantity": updated.quantity},
    )
    return IncomingMaterialRead.model_validate(updated)


@router.delete("/{shipping_id}", status_code=204)
def delete_incoming(
    shipping_id: int,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> None:
    service.delete_incoming(shipping_id)
    log_event(
        service._db,
        user,
        action="incoming_delete",
        entity_type="incoming_material",
        entity_id=str(shipping_id),
    )
