from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from inv_app.audit import log_event
from inv_app.deps import ledger_config_dep, session_dep
from inv_app.ledger_config import LedgerConfig
from inv_app.models import User
from inv_app.schemas import (
    AdjustRequest,
    LedgerResult,
    LotRead,
    MaterialGroupRead,
    MaterialRead,
    MoveRequest,
    ReceiveRequest,
    ReceiveResult,
    RemoveRequest,
    StatusUpdate,
    TransactionRead,
    UsageReasonRead,
)
from inv_app.security import require_admin_api, require_user_api
from inv_app.services.ledger_service import LedgerService
from inv_app.services.material_service import MaterialService

router = APIRouter(tags=["materials"])


def ledger_service_dep(
    db: Session = Depends(session_dep),
    config: LedgerConfig = Depends(ledger_config_dep),
) -> LedgerService:
    return LedgerService(db, config=config)


def material_service_dep(
    db: Session = Depends(session_dep),
    config: LedgerConfig = Depends(ledger_config_dep),
) -> MaterialService:
    return MaterialService(db, config=config)


@router.post("/materials/receive", response_model=ReceiveResult)
def receive_material(
    payload: ReceiveRequest,
    user: User = Depends(require_user_api),
    service: LedgerService = Depends(ledger_service_dep),
) -> ReceiveResult:
    material_id = service.receive(payload)
    log_event(
        service._db,
        user,
        action="material_receive",
        entity_type="material",
        entity_id=str(material_id),
        detail={
            "shipping_id": payload.shipping_id,
            "location_id": payload.location_id,
            "quantity": payload.quantity,
        },
    )
    return ReceiveResult(material_id=material_id)


@router.patch("/materials/move", response_model=LedgerResult)
def move_material(
    payload: MoveRequest,
    user: User = Depends(require_user_api),
    service: LedgerService = Depends(ledger_service_dep),
) -> LedgerResult:
    result = service.move(payload)
    log_event(
        service._db,
        user,
        action="material_move",
        entity_type="material",
        entity_id=str(payload.material_id),
        detail={
            "to_material_id": result.material_id,
            "location_id": payload.location_id,
            "quantity": payload.quantity,
            "job_ticket": result.job_ticket,
        },
    )
    return result


@router.patch("/materials/remove", response_model=LedgerResult)
def remove_material(
    payload: RemoveRequest,
    user: User = Depends(require_user_api),
    service: LedgerService = Depends(ledger_service_dep),
) -> LedgerResult:
    result = service.remove(payload)
    log_event(
        service._db,
        user,
        action="material_remove",
        entity_type="material",
        entity_id=str(payload.material_id),
        detail={
            "quantity": payload.quantity,
            "job_ticket": payload.job_ticket,
            "reason_id": payload.reason_id,
        },
    )
    return result


@router.patch("/materials/status")
def update_materials_status(
    payload: StatusUpdate,
    user: User = Depends(require_admin_api),
    service: MaterialService = Depends(material_service_dep),
) -> dict[str, int]:
    updated = service.update_status(payload.stock_id, payload.material_status)
    log_event(
        service._db,
        user,
        action="material_status_update",
        entity_type="stock",
        entity_id=payload.stock_id,
        detail={"material_status": payload.material_status, "updated": updated},
    )
    return {"updated": updated}


@router.patch("/materials/{material_id}", status_code=204)
def adjust_material(
    material_id: int,
    payload: AdjustRequest,
    user: User = Depends(require_admin_api),
    service: LedgerService = Depends(ledger_service_dep),
) -> None:
    service.adjust(material_id, payload)
    log_event(
        service._db,
        user,
        action="material_adjust",
        entity_type="material",
        entity_id=str(material_id),
        detail=payload.model_dump(exclude_none=True),
    )


@router.get("/materials", response_model=list[MaterialRead])
def list_materials(
    material_id: Optional[int] = None,
    stock_id: Optional[str] = None,
    program_id: Optional[int] = None,
    description: Optional[str] = None,
    location_name: Optional[str] = None,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[MaterialRead]:
    return service.search(
        material_id=material_id,
        stock_id=stock_id,
        program_id=program_id,
        description=description,
        location_name=location_name,
    )


@router.get("/materials/exact", response_model=list[MaterialRead])
def list_materials_exact(
    stock_id: str,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[MaterialRead]:
    return service.by_stock_id(stock_id)


@router.get("/materials/grouped", response_model=list[MaterialGroupRead])
def list_materials_grouped(
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[MaterialGroupRead]:
    return service.grouped()


@router.get("/materials/description/{stock_id}")
def get_material_description(
    stock_id: str,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> dict[str, str]:
    return {"stock_id": stock_id, "description": service.description(stock_id)}


@router.get("/materials/{material_id}/lots", response_model=list[LotRead])
def list_material_lots(
    material_id: int,
    user: User = Depends(require_user_api),
    service: LedgerService = Depends(ledger_service_dep),
) -> list[LotRead]:
    return service.lots(material_id)


@router.get("/transactions", response_model=list[TransactionRead])
def list_transactions(
    job_ticket: str,
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[TransactionRead]:
    return service.transactions(job_ticket)


@router.get("/material_types", response_model=list[str])
def list_material_types(
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[str]:
    return service.material_types()


@router.get("/material_usage_reasons", response_model=list[UsageReasonRead])
def list_usage_reasons(
    user: User = Depends(require_user_api),
    service: MaterialService = Depends(material_service_dep),
) -> list[UsageReasonRead]:
    return [UsageReasonRead.model_validate(r) for r in service.usage_reasons()]
