from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inv_app.errors import DBError, NotFoundError
from inv_app.ledger_config import LedgerConfig
from inv_app.models import IncomingMaterial, Location, Material, MaterialUsageReason
from inv_app.repositories.ledger_repository import LedgerRepository
from inv_app.repositories.material_repository import MaterialRepository
from inv_app.schemas import (
    IncomingMaterialCounts,
    IncomingMaterialCreate,
    MaterialGroupRead,
    MaterialRead,
    TransactionRead,
)

logger = logging.getLogger(__name__)


def _material_read(material: Material, location_name: Optional[str], warehouse_name: Optional[str]) -> MaterialRead:
    read = MaterialRead.model_validate(material)
    read.location_name = location_name
    read.warehouse_name = warehouse_name
    return read


class MaterialService:
    """Intake queue and read-side queries over located materials.

    Quantity-changing operations live in ``LedgerService``; nothing here
    touches ``materials.quantity``, ``prices`` or ``transactions_log``.
    """

    def __init__(self, db: Session, config: Optional[LedgerConfig] = None):
        self._db = db
        self._config = config or LedgerConfig()
        self._materials = MaterialRepository(db)
        self._ledger = LedgerRepository(db)

    def _commit(self, operation: str) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.exception(f"{operation} failed with a storage error")
            raise DBError(f"{operation} failed: storage error", e) from e

    def send(self, payload: IncomingMaterialCreate) -> IncomingMaterial:
        incoming = IncomingMaterial(
            program_id=payload.program_id,
            stock_id=payload.stock_id.strip(),
            cost=payload.cost,
            quantity=payload.quantity,
            min_required_quantity=payload.min_required_quantity,
            max_required_quantity=payload.max_required_quantity,
            description=payload.description,
            material_status=payload.material_status,
            material_type=payload.material_type,
            owner=payload.owner.strip(),
            user_id=payload.user_id,
        )
        self._materials.add_incoming(incoming)
        self._commit("send material")
        self._db.refresh(incoming)
        logger.info(f"Queued shipment {incoming.id}: {incoming.quantity} of {incoming.stock_id}")
        return incoming

    def list_incoming(self, shipping_id: Optional[int] = None) -> list[IncomingMaterial]:
        return self._materials.list_incoming(shipping_id=shipping_id)

    def update_incoming(self, shipping_id: int, payload: IncomingMaterialCreate) -> IncomingMaterial:
        incoming = self._materials.get_incoming(shipping_id)
        if incoming is None:
            raise NotFoundError("Incoming material", shipping_id)

        incoming.program_id = payload.program_id
        incoming.stock_id = payload.stock_id.strip()
        incoming.cost = payload.cost
        incoming.quantity = payload.quantity
        incoming.min_required_quantity = payload.min_required_quantity
        incoming.max_required_quantity = payload.max_required_quantity
        incoming.description = payload.description
        incoming.material_status = payload.material_status
        incoming.material_type = payload.material_type
        incoming.owner = payload.owner.strip()

        self._commit("update incoming material")
        self._db.refresh(incoming)
        return incoming

    def delete_incoming(self, shipping_id: int) -> None:
        if self._materials.delete_incoming(shipping_id) == 0:
            self._db.rollback()
            raise NotFoundError("Incoming material", shipping_id)
        self._commit("delete incoming material")

    def incoming_counts(self) -> IncomingMaterialCounts:
        vault_types = list(self._config.materials.vault_types)
        return IncomingMaterialCounts(
            warehouse=self._materials.count_incoming(vault_types, include=False),
            vault=self._materials.count_incoming(vault_types, include=True),
        )

    def search(
        self,
        material_id: Optional[int] = None,
        stock_id: Optional[str] = None,
        program_id: Optional[int] = None,
        description: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> list[MaterialRead]:
        rows = self._materials.search(
            material_id=material_id,
            stock_id=stock_id,
            program_id=program_id,
            description=description,
            location_name=location_name,
        )
        return [_material_read(m, loc, wh) for m, loc, wh in rows]

    def by_stock_id(self, stock_id: str) -> list[MaterialRead]:
        if not stock_id.strip():
            return []
        return [_material_read(m, loc, wh) for m, loc, wh in self._materials.by_stock_id(stock_id)]

    def grouped(self) -> list[MaterialGroupRead]:
        return [
            MaterialGroupRead(
                program_id=program_id,
                stock_id=stock_id,
                description=description,
                material_status=status,
                quantity=int(qty or 0),
            )
            for program_id, stock_id, description, status, qty in self._materials.grouped_by_stock_id()
        ]

    def description(self, stock_id: str) -> str:
        description = self._materials.description_for_stock_id(stock_id)
        if description is None:
            raise NotFoundError("Material with stock id", stock_id)
        return description

    def update_status(self, stock_id: str, status: str) -> int:
        updated = self._materials.set_status_for_stock_id(stock_id.strip(), status)
        if updated == 0:
            self._db.rollback()
            raise NotFoundError("Material with stock id", stock_id)
        self._commit("update material status")
        return updated

    def material_types(self) -> list[str]:
        return list(self._config.materials.types)

    def usage_reasons(self) -> list[MaterialUsageReason]:
        return self._materials.list_reasons()

    def locations(self) -> list[Location]:
        return self._materials.list_locations()

    def available_locations(self, stock_id: str, owner: str) -> list[Location]:
        """Where a material can be placed without mixing it with other stock."""
        return self._materials.available_locations(stock_id.strip(), owner.strip())

    def transactions(self, job_ticket: str) -> list[TransactionRead]:
        return [
            TransactionRead(
                material_id=material_id,
                stock_id=stock_id,
                location_id=location_id,
                location_name=location_name,
                warehouse_name=warehouse_name,
                quantity=int(qty),
                job_ticket=ticket,
            )
            for material_id, stock_id, location_id, location_name, warehouse_name, qty, ticket in (
                self._ledger.outbound_for_ticket(job_ticket)
            )
        ]
