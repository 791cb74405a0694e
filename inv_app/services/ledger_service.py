from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from inv_app.errors import (
    ConflictError,
    DBError,
    InsufficientQuantityError,
    InvalidInputError,
    LedgerError,
    NotFoundError,
)
from inv_app.ledger_config import LedgerConfig
from inv_app.models import Material
from inv_app.repositories.ledger_repository import LedgerRepository
from inv_app.repositories.material_repository import MaterialRepository
from inv_app.schemas import (
    AdjustRequest,
    ConsumedLot,
    ConsumedLotRead,
    LedgerResult,
    LotRead,
    MoveRequest,
    ReceiveRequest,
    RemoveRequest,
)
from inv_app.utils import ticket_factory, utcnow

logger = logging.getLogger(__name__)


class LedgerService:
    """Receive, move, remove and adjust located inventory.

    Every public operation runs in a single transaction on the bound session:
    it commits when the operation succeeds and rolls back everything it did
    otherwise. Quantities on ``materials``, the cost lots in ``prices`` and the
    ``transactions_log`` entries are only ever written from here.
    """

    def __init__(
        self,
        db: Session,
        config: Optional[LedgerConfig] = None,
        new_ticket: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = db
        self._config = config or LedgerConfig()
        self._materials = MaterialRepository(db)
        self._ledger = LedgerRepository(db)
        self._new_ticket = new_ticket or ticket_factory(self._config.tickets)
        self._now = clock or utcnow

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        try:
            yield
            self._db.commit()
        except LedgerError:
            self._db.rollback()
            raise
        except IntegrityError as e:
            self._db.rollback()
            logger.warning(f"{operation} rejected by a database constraint: {e.orig}")
            raise ConflictError(f"{operation} conflicts with existing inventory data", e) from e
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.exception(f"{operation} failed with a storage error")
            raise DBError(f"{operation} failed: storage error", e) from e
        except Exception:
            self._db.rollback()
            raise

    def _get_material(self, material_id: int) -> Material:
        material = self._materials.get(material_id, for_update=True)
        if material is None:
            raise NotFoundError("Material", material_id)
        return material

    def _require_location(self, location_id: int) -> None:
        if self._materials.get_location(location_id) is None:
            raise NotFoundError("Location", location_id)

    @staticmethod
    def _take_from(material: Material, quantity: int) -> None:
        if quantity == material.quantity:
            # Fully drained rows go off-shelf.
            material.quantity = 0
            material.location_id = None
        else:
            material.quantity = material.quantity - quantity

    def consume_fifo(
        self,
        material_id: int,
        quantity: int,
        notes: Optional[str],
        job_ticket: Optional[str],
        serial_number_range: Optional[str] = None,
        reason_id: Optional[int] = None,
    ) -> list[ConsumedLot]:
        """Retire ``quantity`` from the material's lots, oldest lot first.

        Writes one negative ``transactions_log`` entry per lot touched and
        returns the ``(quantity, unit_cost)`` taken from each, in the order
        consumed. Running out of lots is not an error; the caller checks the
        material quantity beforehand. Does not commit.
        """
        consumed: list[ConsumedLot] = []
        remaining = quantity
        now = self._now()

        for lot in self._ledger.list_active_lots(material_id):
            if remaining <= 0:
                break
            take = min(remaining, int(lot.quantity))
            lot_id = lot.id
            unit_cost = self._ledger.adjust_lot_quantity(lot_id, -take)
            self._ledger.add_transaction(
                price_id=lot_id,
                quantity_change=-take,
                updated_at=now,
                notes=notes,
                job_ticket=job_ticket,
                serial_number_range=serial_number_range,
                reason_id=reason_id,
            )
            consumed.append(ConsumedLot(quantity=take, unit_cost=unit_cost))
            remaining -= take

        if remaining > 0:
            logger.warning(
                f"Material {material_id}: cost lots short by {remaining} of {quantity} while consuming"
            )
        return consumed

    def receive(self, payload: ReceiveRequest) -> int:
        """Place (part of) an incoming shipment at a location; returns the material id."""
        if payload.quantity <= 0:
            raise InvalidInputError("quantity must be > 0")

        with self._atomic("receive"):
            incoming = self._materials.get_incoming(payload.shipping_id, for_update=True)
            if incoming is None:
                raise NotFoundError("Incoming material", payload.shipping_id)
            if payload.quantity > incoming.quantity:
                raise InvalidInputError(
                    f"The receiving quantity ({payload.quantity}) is more than the incoming one ({incoming.quantity})"
                )
            self._require_location(payload.location_id)

            qty = payload.quantity
            material = self._materials.find_at_location(
                incoming.stock_id, payload.location_id, incoming.owner
            )
            if material is not None:
                material.quantity = material.quantity + qty
                if payload.notes is not None:
                    material.notes = payload.notes
            else:
                material = self._materials.find_off_shelf(incoming.stock_id, incoming.owner)
                if material is not None:
                    material.location_id = payload.location_id
                    material.quantity = qty
                    if payload.notes is not None:
                        material.notes = payload.notes
                else:
                    material = Material(
                        stock_id=incoming.stock_id,
                        location_id=payload.location_id,
                        program_id=incoming.program_id,
                        material_type=incoming.material_type,
                        description=incoming.description,
                        notes=payload.notes,
                        quantity=qty,
                        min_required_quantity=incoming.min_required_quantity,
                        max_required_quantity=incoming.max_required_quantity,
                        material_status=incoming.material_status,
                        owner=incoming.owner,
                        is_primary=False,
                        updated_at=self._now(),
                    )
                    self._materials.add(material)

            if payload.serial_number_range:
                material.serial_number_range = payload.serial_number_range
            if payload.is_primary is not None:
                material.is_primary = payload.is_primary
            self._db.flush()

            material_id = material.id
            price_id = self._ledger.upsert_lot(material_id, qty, Decimal(incoming.cost))

            shipping_id = incoming.id
            if incoming.quantity <= qty:
                self._db.delete(incoming)
            else:
                incoming.quantity = incoming.quantity - qty
            self._db.flush()

            self._ledger.add_transaction(
                price_id=price_id,
                quantity_change=qty,
                updated_at=self._now(),
                notes=payload.notes,
                serial_number_range=payload.serial_number_range,
            )

        logger.info(
            f"Received {qty} of shipment {shipping_id} into location {payload.location_id} as material {material_id}"
        )
        return material_id

    def move(self, payload: MoveRequest) -> LedgerResult:
        """Move quantity to another location, carrying its cost basis lot by lot."""
        if payload.quantity <= 0:
            raise InvalidInputError("quantity must be > 0")

        ticket = self._new_ticket()
        notes_cfg = self._config.notes

        with self._atomic("move"):
            source = self._get_material(payload.material_id)
            if payload.quantity > source.quantity:
                raise InsufficientQuantityError(payload.quantity, source.quantity, action="moving")
            if source.location_id == payload.location_id:
                raise InvalidInputError(
                    f"Material {source.id} is already at location {payload.location_id}"
                )
            self._require_location(payload.location_id)

            qty = payload.quantity
            source_id = source.id
            self._take_from(source, qty)
            source.updated_at = self._now()
            self._db.flush()

            consumed = self.consume_fifo(
                source_id,
                qty,
                notes=notes_cfg.moved_to,
                job_ticket=ticket,
                serial_number_range=payload.serial_number_range,
            )

            destination = self._materials.find_at_location(
                source.stock_id, payload.location_id, source.owner
            )
            if destination is None:
                destination = Material(
                    stock_id=source.stock_id,
                    location_id=payload.location_id,
                    program_id=source.program_id,
                    material_type=source.material_type,
                    description=source.description,
                    notes=payload.notes if payload.notes is not None else source.notes,
                    quantity=qty,
                    min_required_quantity=source.min_required_quantity,
                    max_required_quantity=source.max_required_quantity,
                    material_status=source.material_status,
                    owner=source.owner,
                    is_primary=source.is_primary,
                    serial_number_range=source.serial_number_range,
                    updated_at=self._now(),
                )
                self._materials.add(destination)
            else:
                destination.quantity = destination.quantity + qty
                destination.updated_at = self._now()
                if payload.notes is not None:
                    destination.notes = payload.notes
            self._db.flush()

            destination_id = destination.id
            now = self._now()
            for lot in consumed:
                price_id = self._ledger.upsert_lot(destination_id, lot.quantity, lot.unit_cost)
                self._ledger.add_transaction(
                    price_id=price_id,
                    quantity_change=lot.quantity,
                    updated_at=now,
                    notes=notes_cfg.moved_from,
                    job_ticket=ticket,
                    serial_number_range=payload.serial_number_range,
                )

        logger.info(
            f"Moved {qty} of material {source_id} to location {payload.location_id} "
            f"(material {destination_id}, ticket {ticket!r})"
        )
        return LedgerResult(
            material_id=destination_id,
            job_ticket=ticket,
            lots=[ConsumedLotRead(quantity=q, unit_cost=c) for q, c in consumed],
        )

    def remove(self, payload: RemoveRequest) -> LedgerResult:
        """Consume quantity for good: usage, spoilage or shipment out."""
        if payload.quantity <= 0:
            raise InvalidInputError("quantity must be > 0")

        with self._atomic("remove"):
            material = self._get_material(payload.material_id)
            if payload.quantity > material.quantity:
                raise InsufficientQuantityError(payload.quantity, material.quantity, action="removing")
            if payload.reason_id is not None and self._materials.get_reason(payload.reason_id) is None:
                raise NotFoundError("Usage reason", payload.reason_id)

            material_id = material.id
            self._take_from(material, payload.quantity)
            material.updated_at = self._now()
            self._db.flush()

            consumed = self.consume_fifo(
                material_id,
                payload.quantity,
                notes=self._config.notes.removed_from,
                job_ticket=payload.job_ticket,
                serial_number_range=payload.serial_number_range,
                reason_id=payload.reason_id,
            )

        logger.info(
            f"Removed {payload.quantity} of material {material_id} "
            f"(ticket {payload.job_ticket!r}, reason {payload.reason_id})"
        )
        return LedgerResult(
            material_id=material_id,
            job_ticket=payload.job_ticket,
            lots=[ConsumedLotRead(quantity=q, unit_cost=c) for q, c in consumed],
        )

    def adjust(self, material_id: int, payload: AdjustRequest) -> None:
        """Either flag a material as primary or correct its quantity, never both."""
        if (payload.is_primary is None) == (payload.quantity_delta is None):
            raise InvalidInputError("Provide exactly one of is_primary or quantity_delta")
        if payload.quantity_delta == 0:
            raise InvalidInputError("quantity_delta must be != 0")

        with self._atomic("adjust"):
            if payload.is_primary is not None:
                if self._materials.set_primary(material_id, payload.is_primary) == 0:
                    raise NotFoundError("Material", material_id)
                logger.info(f"Material {material_id} primary flag set to {payload.is_primary}")
                return

            delta = int(payload.quantity_delta)
            if delta > 0:
                material = self._materials.get(material_id, for_update=True)
                if material is None:
                    raise NotFoundError("Material", material_id)
                if material.location_id is None:
                    raise InvalidInputError(
                        f"Material {material_id} is off-shelf; receive or move it to a location first"
                    )
            if self._materials.add_quantity_if_available(material_id, delta) == 0:
                material = self._materials.get(material_id)
                if material is None:
                    raise NotFoundError("Material", material_id)
                raise InsufficientQuantityError(-delta, material.quantity, action="adjusting")

            if delta > 0:
                price_id = self._ledger.upsert_lot(material_id, delta, Decimal("0"))
                self._ledger.add_transaction(
                    price_id=price_id,
                    quantity_change=delta,
                    updated_at=self._now(),
                    notes=self._config.notes.adjusted,
                    job_ticket=payload.job_ticket,
                )
            else:
                self.consume_fifo(
                    material_id,
                    -delta,
                    notes=self._config.notes.adjusted,
                    job_ticket=payload.job_ticket,
                )

        logger.info(f"Adjusted material {material_id} by {delta}")

    def lots(self, material_id: int) -> list[LotRead]:
        if self._materials.get(material_id) is None:
            raise NotFoundError("Material", material_id)
        balances = self._ledger.audit_balances(material_id)
        out: list[LotRead] = []
        for lot in self._ledger.list_lots(material_id):
            balance = balances.get(lot.id, 0)
            out.append(
                LotRead(
                    id=lot.id,
                    quantity=int(lot.quantity),
                    cost=Decimal(lot.cost),
                    audit_balance=balance,
                    balanced=int(lot.quantity) == balance,
                )
            )
        return out
