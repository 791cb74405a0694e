from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from inv_app.errors import NotFoundError
from inv_app.models import Location, Material, Price, TransactionLog


# Scale of the prices.cost column; lots are keyed on the stored value.
COST_QUANTUM = Decimal("0.0001")


class LedgerRepository:
    """Cost lots (``prices``) and the append-only ``transactions_log``."""

    def __init__(self, db: Session):
        self._db = db

    def upsert_lot(self, material_id: int, quantity: int, unit_cost: Decimal) -> int:
        """Add ``quantity`` to the material's lot at ``unit_cost``, creating it if needed."""
        unit_cost = Decimal(unit_cost).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)
        lot = self._db.scalar(
            select(Price)
            .where(Price.material_id == material_id, Price.cost == unit_cost)
            .with_for_update()
        )
        if lot is None:
            lot = Price(material_id=material_id, quantity=quantity, cost=unit_cost)
            self._db.add(lot)
        else:
            lot.quantity = int(lot.quantity) + quantity
        self._db.flush()
        return lot.id

    def adjust_lot_quantity(self, lot_id: int, delta: int) -> Decimal:
        lot = self._db.get(Price, lot_id, with_for_update=True)
        if lot is None:
            raise NotFoundError("Price", lot_id)
        lot.quantity = int(lot.quantity) + delta
        self._db.flush()
        return Decimal(lot.cost)

    def list_active_lots(self, material_id: int) -> list[Price]:
        # Ascending lot id is creation order; this ordering is what makes FIFO hold.
        return list(
            self._db.scalars(
                select(Price)
                .where(Price.material_id == material_id, Price.quantity > 0)
                .order_by(Price.id)
            )
        )

    def list_lots(self, material_id: int) -> list[Price]:
        return list(
            self._db.scalars(
                select(Price).where(Price.material_id == material_id).order_by(Price.id)
            )
        )

    def add_transaction(
        self,
        price_id: int,
        quantity_change: int,
        updated_at: datetime,
        notes: Optional[str] = None,
        job_ticket: Optional[str] = None,
        serial_number_range: Optional[str] = None,
        reason_id: Optional[int] = None,
    ) -> TransactionLog:
        entry = TransactionLog(
            price_id=price_id,
            quantity_change=quantity_change,
            notes=notes,
            job_ticket=job_ticket,
            updated_at=updated_at,
            serial_number_range=serial_number_range,
            reason_id=reason_id,
        )
        self._db.add(entry)
        self._db.flush()
        return entry

    def audit_balances(self, material_id: int) -> dict[int, int]:
        """Sum of ``quantity_change`` per lot of the material, keyed by price id."""
        rows = self._db.execute(
            select(
                Price.id,
                func.coalesce(func.sum(TransactionLog.quantity_change), 0),
            )
            .select_from(Price)
            .outerjoin(TransactionLog, TransactionLog.price_id == Price.id)
            .where(Price.material_id == material_id)
            .group_by(Price.id)
        ).all()
        return {int(price_id): int(total or 0) for price_id, total in rows}

    def outbound_for_ticket(self, job_ticket: str) -> list[tuple]:
        stmt = (
            select(
                Material.id,
                Material.stock_id,
                Location.id,
                Location.name,
                Location.warehouse_name,
                TransactionLog.quantity_change,
                TransactionLog.job_ticket,
            )
            .select_from(TransactionLog)
            .join(Price, Price.id == TransactionLog.price_id)
            .join(Material, Material.id == Price.material_id)
            .outerjoin(Location, Location.id == Material.location_id)
            .where(
                TransactionLog.quantity_change < 0,
                TransactionLog.job_ticket == job_ticket,
            )
            .order_by(TransactionLog.id)
        )
        return list(self._db.execute(stmt).all())
