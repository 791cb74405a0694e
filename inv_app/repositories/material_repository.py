from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.orm import Session

from inv_app.models import IncomingMaterial, Location, Material, MaterialUsageReason


class MaterialRepository:
    def __init__(self, db: Session):
        self._db = db

    def add(self, material: Material) -> None:
        self._db.add(material)

    def get(self, material_id: int, for_update: bool = False) -> Optional[Material]:
        stmt = select(Material).where(Material.id == material_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._db.scalar(stmt)

    def find_at_location(
        self, stock_id: str, location_id: int, owner: str, for_update: bool = True
    ) -> Optional[Material]:
        stmt = select(Material).where(
            Material.stock_id == stock_id,
            Material.location_id == location_id,
            Material.owner == owner,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._db.scalar(stmt.order_by(Material.id).limit(1))

    def find_off_shelf(self, stock_id: str, owner: str, for_update: bool = True) -> Optional[Material]:
        stmt = select(Material).where(
            Material.stock_id == stock_id,
            Material.location_id.is_(None),
            Material.owner == owner,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._db.scalar(stmt.order_by(Material.id).limit(1))

    def add_quantity_if_available(self, material_id: int, delta: int) -> int:
        """Apply ``delta`` unless it would drive the quantity negative; returns rows affected."""
        result = self._db.execute(
            update(Material)
            .where(Material.id == material_id, Material.quantity + delta >= 0)
            .values(quantity=Material.quantity + delta)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def set_primary(self, material_id: int, is_primary: bool) -> int:
        result = self._db.execute(
            update(Material)
            .where(Material.id == material_id)
            .values(is_primary=is_primary)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def set_status_for_stock_id(self, stock_id: str, status: str) -> int:
        result = self._db.execute(
            update(Material)
            .where(Material.stock_id == stock_id)
            .values(material_status=status)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def search(
        self,
        material_id: Optional[int] = None,
        stock_id: Optional[str] = None,
        program_id: Optional[int] = None,
        description: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> list[tuple[Material, Optional[str], Optional[str]]]:
        stmt = (
            select(Material, Location.name, Location.warehouse_name)
            .select_from(Material)
            .outerjoin(Location, Location.id == Material.location_id)
        )
        if material_id is not None:
            stmt = stmt.where(Material.id == material_id)
        if stock_id:
            stmt = stmt.where(Material.stock_id.ilike(f"%{stock_id.strip()}%"))
        if program_id is not None:
            stmt = stmt.where(Material.program_id == program_id)
        if description:
            stmt = stmt.where(Material.description.ilike(f"%{description.strip()}%"))
        if location_name:
            stmt = stmt.where(Location.name.ilike(f"%{location_name.strip()}%"))

        stmt = stmt.order_by(Material.is_primary.desc(), Material.program_id, Material.stock_id)
        return [(m, loc, wh) for m, loc, wh in self._db.execute(stmt).all()]

    def by_stock_id(self, stock_id: str) -> list[tuple[Material, Optional[str], Optional[str]]]:
        stmt = (
            select(Material, Location.name, Location.warehouse_name)
            .select_from(Material)
            .outerjoin(Location, Location.id == Material.location_id)
            .where(Material.stock_id == stock_id.strip())
            .order_by(Material.id)
        )
        return [(m, loc, wh) for m, loc, wh in self._db.execute(stmt).all()]

    def grouped_by_stock_id(self) -> list[tuple]:
        stmt = (
            select(
                Material.program_id,
                Material.stock_id,
                Material.description,
                Material.material_status,
                func.coalesce(func.sum(Material.quantity), 0).label("quantity"),
            )
            .where(Material.location_id.is_not(None))
            .group_by(
                Material.program_id,
                Material.stock_id,
                Material.description,
                Material.material_status,
            )
            .order_by(Material.stock_id)
        )
        return list(self._db.execute(stmt).all())

    def description_for_stock_id(self, stock_id: str) -> Optional[str]:
        return self._db.scalar(
            select(Material.description)
            .where(func.lower(Material.stock_id) == stock_id.strip().lower())
            .order_by(Material.id)
            .limit(1)
        )

    def get_location(self, location_id: int) -> Optional[Location]:
        return self._db.get(Location, location_id)

    def list_locations(self) -> list[Location]:
        return list(self._db.scalars(select(Location).order_by(Location.warehouse_name, Location.name)))

    def available_locations(self, stock_id: str, owner: str) -> list[Location]:
        """Locations that hold nothing, or already hold this stock id for this owner."""
        holds_same = exists().where(
            Material.location_id == Location.id,
            Material.stock_id == stock_id,
            Material.owner == owner,
        )
        holds_any = exists().where(Material.location_id == Location.id)
        stmt = select(Location).where(or_(holds_same, ~holds_any)).order_by(Location.name)
        return list(self._db.scalars(stmt))

    def get_reason(self, reason_id: int) -> Optional[MaterialUsageReason]:
        return self._db.get(MaterialUsageReason, reason_id)

    def list_reasons(self) -> list[MaterialUsageReason]:
        return list(self._db.scalars(select(MaterialUsageReason).order_by(MaterialUsageReason.id)))

    def add_incoming(self, incoming: IncomingMaterial) -> None:
        self._db.add(incoming)

    def get_incoming(self, shipping_id: int, for_update: bool = False) -> Optional[IncomingMaterial]:
        stmt = select(IncomingMaterial).where(IncomingMaterial.id == shipping_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._db.scalar(stmt)

    def list_incoming(self, shipping_id: Optional[int] = None) -> list[IncomingMaterial]:
        stmt = select(IncomingMaterial)
        if shipping_id is not None:
            stmt = stmt.where(IncomingMaterial.id == shipping_id)
        return list(self._db.scalars(stmt.order_by(IncomingMaterial.id)))

    def delete_incoming(self, shipping_id: int) -> int:
        result = self._db.execute(delete(IncomingMaterial).where(IncomingMaterial.id == shipping_id))
        return int(result.rowcount or 0)

    def count_incoming(self, material_types: list[str], include: bool) -> int:
        stmt = select(func.count()).select_from(IncomingMaterial)
        if material_types:
            if include:
                stmt = stmt.where(IncomingMaterial.material_type.in_(material_types))
            else:
                stmt = stmt.where(IncomingMaterial.material_type.not_in(material_types))
        elif include:
            return 0
        return int(self._db.scalar(stmt) or 0)
