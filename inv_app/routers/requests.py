from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from inv_app.audit import log_event
from inv_app.deps import session_dep
from inv_app.models import User
from inv_app.schemas import (
    MaterialRequestCreate,
    RequestedMaterialRead,
    RequestedMaterialUpdate,
)
from inv_app.security import require_user_api
from inv_app.services.request_service import RequestService

router = APIRouter(prefix="/requested_materials", tags=["requests"])


def request_service_dep(db: Session = Depends(session_dep)) -> RequestService:
    return RequestService(db)


@router.post("", response_model=list[RequestedMaterialRead])
def request_materials(
    payload: MaterialRequestCreate,
    user: User = Depends(require_user_api),
    service: RequestService = Depends(request_service_dep),
) -> list[RequestedMaterialRead]:
    if payload.user_id is None:
        payload = payload.model_copy(update={"user_id": user.id})
    rows = service.request(payload)
    log_event(
        service._db,
        user,
        action="materials_request",
        entity_type="requested_material",
        detail={"request_ids": [r.id for r in rows]},
    )
    return [RequestedMaterialRead.model_validate(r) for r in rows]


@router.get("", response_model=list[RequestedMaterialRead])
def list_requested(
    request_id: Optional[int] = None,
    stock_id: Optional[str] = None,
    status: Optional[str] = None,
    requested_from: Optional[datetime] = None,
    requested_to: Optional[datetime] = None,
    user: User = Depends(require_user_api),
    service: RequestService = Depends(request_service_dep),
) -> list[RequestedMaterialRead]:
    return service.list(
        request_id=request_id,
        stock_id=stock_id,
        status=status,
        requested_from=requested_from,
        requested_to=requested_to,
    )


@router.get("/count")
def count_pending(
    user: User = Depends(require_user_api),
    service: RequestService = Depends(request_service_dep),
) -> dict[str, int]:
    return {"pending": service.pending_count()}


@router.patch("/{request_id}", response_model=RequestedMaterialRead)
def update_requested(
    request_id: int,
    payload: RequestedMaterialUpdate,
    user: User = Depends(require_user_api),
    service: RequestService = Depends(request_service_dep),
) -> RequestedMaterialRead:
    row = service.update(request_id, payload)
    log_event(
        service._db,
        user,
        action="requested_material_update",
        entity_type="requested_material",
        entity_id=str(request_id),
        detail={"status": payload.status, "quantity_used": payload.quantity_used},
    )
    return RequestedMaterialRead.model_validate(row)
