from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from inv_app.errors import DBError, InsufficientQuantityError, InvalidInputError, LedgerError, NotFoundError
from inv_app.models import IncomingMaterial, Material, MaterialUsageReason, Price, TransactionLog
from inv_app.repositories.ledger_repository import LedgerRepository
from inv_app.schemas import (
    AdjustRequest,
    ConsumedLot,
    IncomingMaterialCreate,
    MoveRequest,
    ReceiveRequest,
    RemoveRequest,
)
from inv_app.services.ledger_service import LedgerService
from inv_app.services.material_service import MaterialService

TICKET = "Auto-Ticket: 123456"


def _ledger(db) -> LedgerService:
    return LedgerService(db, new_ticket=lambda: TICKET)


def _queue(db, quantity=100, cost="2.00", stock_id="X1", owner="ACME", material_type="CHIPS") -> int:
    incoming = MaterialService(db).send(
        IncomingMaterialCreate(
            stock_id=stock_id,
            quantity=quantity,
            cost=Decimal(cost),
            material_type=material_type,
            owner=owner,
            description="Test chip",
        )
    )
    return incoming.id


def _receive(db, location_id, quantity=100, cost="2.00", **kwargs) -> int:
    shipping_id = _queue(db, quantity=quantity, cost=cost, **kwargs)
    return _ledger(db).receive(
        ReceiveRequest(shipping_id=shipping_id, location_id=location_id, quantity=quantity)
    )


def _lots(db, material_id) -> list[tuple[int, Decimal]]:
    return [
        (lot.quantity, lot.cost)
        for lot in db.scalars(select(Price).where(Price.material_id == material_id).order_by(Price.id))
    ]


def _snapshot(db):
    db.expire_all()
    return (
        [(m.id, m.location_id, m.quantity) for m in db.scalars(select(Material).order_by(Material.id))],
        [(p.id, p.quantity) for p in db.scalars(select(Price).order_by(Price.id))],
        db.scalar(select(func.count()).select_from(TransactionLog)),
    )


def _assert_books_balance(db):
    db.expire_all()
    totals = dict(
        db.execute(
            select(TransactionLog.price_id, func.sum(TransactionLog.quantity_change)).group_by(
                TransactionLog.price_id
            )
        ).all()
    )
    for lot in db.scalars(select(Price)):
        assert lot.quantity >= 0
        assert totals.get(lot.id, 0) == lot.quantity
    for material in db.scalars(select(Material)):
        assert material.quantity == sum(q for q, _ in _lots(db, material.id))
        if material.location_id is None:
            assert material.quantity == 0


def test_receive_full_shipment_places_material_and_opens_lot(db, locations):
    shipping_id = _queue(db)

    material_id = _ledger(db).receive(
        ReceiveRequest(shipping_id=shipping_id, location_id=locations["A"], quantity=100)
    )

    material = db.get(Material, material_id)
    assert material.location_id == locations["A"]
    assert material.quantity == 100
    assert material.owner == "ACME"
    assert _lots(db, material_id) == [(100, Decimal("2"))]
    assert db.get(IncomingMaterial, shipping_id) is None
    entries = list(db.scalars(select(TransactionLog)))
    assert [e.quantity_change for e in entries] == [100]
    _assert_books_balance(db)


def test_partial_receive_leaves_the_rest_queued(db, locations):
    shipping_id = _queue(db)

    _ledger(db).receive(ReceiveRequest(shipping_id=shipping_id, location_id=locations["A"], quantity=30))

    assert db.get(IncomingMaterial, shipping_id).quantity == 70


def test_receive_at_same_cost_merges_into_one_lot(db, locations):
    first = _receive(db, locations["A"], quantity=100)
    second = _receive(db, locations["A"], quantity=50)

    assert first == second
    assert db.get(Material, first).quantity == 150
    assert _lots(db, first) == [(150, Decimal("2"))]
    assert db.scalar(select(func.count()).select_from(TransactionLog)) == 2
    _assert_books_balance(db)


def test_receive_more_than_incoming_is_rejected(db, locations):
    shipping_id = _queue(db, quantity=10)

    with pytest.raises(InvalidInputError):
        _ledger(db).receive(ReceiveRequest(shipping_id=shipping_id, location_id=locations["A"], quantity=11))

    assert db.get(IncomingMaterial, shipping_id).quantity == 10
    assert db.scalar(select(func.count()).select_from(Material)) == 0


def test_receive_into_unknown_location_is_rejected(db, locations):
    shipping_id = _queue(db)

    with pytest.raises(NotFoundError):
        _ledger(db).receive(ReceiveRequest(shipping_id=shipping_id, location_id=9999, quantity=10))

    assert db.get(IncomingMaterial, shipping_id).quantity == 100


def test_receive_unknown_shipment_is_not_found(db, locations):
    with pytest.raises(NotFoundError):
        _ledger(db).receive(ReceiveRequest(shipping_id=42, location_id=locations["A"], quantity=1))


def test_fifo_consumes_oldest_lot_first(db, locations):
    material_id = _receive(db, locations["A"], quantity=5, cost="2.00")
    _receive(db, locations["A"], quantity=5, cost="3.00")

    consumed = _ledger(db).consume_fifo(material_id, 7, notes="Picked", job_ticket="JT-1")
    db.commit()

    assert consumed == [ConsumedLot(5, Decimal("2")), ConsumedLot(2, Decimal("3"))]
    assert _lots(db, material_id) == [(0, Decimal("2")), (3, Decimal("3"))]


def test_move_carries_cost_basis_lot_by_lot(db, locations):
    source_id = _receive(db, locations["A"], quantity=5, cost="2.00")
    _receive(db, locations["A"], quantity=5, cost="3.00")

    result = _ledger(db).move(MoveRequest(material_id=source_id, location_id=locations["B"], quantity=7))

    assert result.job_ticket == TICKET
    assert [(lot.quantity, lot.unit_cost) for lot in result.lots] == [(5, Decimal("2")), (2, Decimal("3"))]
    assert db.get(Material, source_id).quantity == 3
    destination = db.get(Material, result.material_id)
    assert destination.location_id == locations["B"]
    assert destination.quantity == 7
    assert destination.stock_id == "X1"
    assert _lots(db, result.material_id) == [(5, Decimal("2")), (2, Decimal("3"))]

    def value(material_id):
        return sum(q * c for q, c in _lots(db, material_id))

    assert value(source_id) + value(result.material_id) == Decimal("25")

    entries = list(
        db.scalars(select(TransactionLog).where(TransactionLog.job_ticket == TICKET).order_by(TransactionLog.id))
    )
    assert [e.quantity_change for e in entries] == [-5, -2, 5, 2]
    assert {e.notes for e in entries[:2]} == {"Moved TO a Location"}
    assert {e.notes for e in entries[2:]} == {"Moved FROM a Location"}
    _assert_books_balance(db)


def test_move_more_than_available_changes_nothing(db, locations):
    source_id = _receive(db, locations["A"])
    before = _snapshot(db)

    with pytest.raises(InsufficientQuantityError) as exc:
        _ledger(db).move(MoveRequest(material_id=source_id, location_id=locations["B"], quantity=500))

    assert exc.value.status_code == 409
    assert "(500)" in exc.value.detail and "(100)" in exc.value.detail
    assert _snapshot(db) == before


def test_move_to_current_location_is_rejected(db, locations):
    source_id = _receive(db, locations["A"])

    with pytest.raises(InvalidInputError):
        _ledger(db).move(MoveRequest(material_id=source_id, location_id=locations["A"], quantity=1))


def test_moving_everything_goes_off_shelf_and_receive_reuses_the_row(db, locations):
    source_id = _receive(db, locations["A"])

    _ledger(db).move(MoveRequest(material_id=source_id, location_id=locations["B"], quantity=100))

    source = db.get(Material, source_id)
    assert source.quantity == 0
    assert source.location_id is None

    reused_id = _receive(db, locations["A"], quantity=20, cost="2.50")

    assert reused_id == source_id
    source = db.get(Material, source_id)
    assert source.location_id == locations["A"]
    assert source.quantity == 20
    assert _lots(db, source_id) == [(0, Decimal("2")), (20, Decimal("2.5"))]
    _assert_books_balance(db)


def test_removing_everything_then_receiving_reuses_the_row(db, locations):
    material_id = _receive(db, locations["A"], quantity=10)

    _ledger(db).remove(RemoveRequest(material_id=material_id, quantity=10, job_ticket="JT-1"))
    assert db.get(Material, material_id).location_id is None

    assert _receive(db, locations["B"], quantity=4) == material_id
    material = db.get(Material, material_id)
    assert material.location_id == locations["B"]
    assert material.quantity == 4
    assert _lots(db, material_id) == [(4, Decimal("2"))]
    _assert_books_balance(db)


def test_receive_move_remove_walkthrough(db, locations):
    ledger = _ledger(db)
    spoilage_id = db.scalar(select(MaterialUsageReason.id).where(MaterialUsageReason.code == 2))
    material_id = _receive(db, locations["A"])

    moved = ledger.move(MoveRequest(material_id=material_id, location_id=locations["B"], quantity=40))
    removed = ledger.remove(
        RemoveRequest(material_id=material_id, quantity=60, job_ticket="JT-9", reason_id=spoilage_id)
    )

    assert [(lot.quantity, lot.unit_cost) for lot in removed.lots] == [(60, Decimal("2"))]
    source = db.get(Material, material_id)
    assert source.quantity == 0
    assert source.location_id is None
    assert db.get(Material, moved.material_id).quantity == 40
    assert _lots(db, moved.material_id) == [(40, Decimal("2"))]

    outbound = list(db.scalars(select(TransactionLog).where(TransactionLog.job_ticket == "JT-9")))
    assert [(e.quantity_change, e.reason_id, e.notes) for e in outbound] == [
        (-60, spoilage_id, "Removed FROM a Location")
    ]
    _assert_books_balance(db)


def test_remove_with_unknown_reason_changes_nothing(db, locations):
    material_id = _receive(db, locations["A"])
    before = _snapshot(db)

    with pytest.raises(NotFoundError):
        _ledger(db).remove(RemoveRequest(material_id=material_id, quantity=10, reason_id=999))

    assert _snapshot(db) == before


def test_remove_more_than_available_is_rejected(db, locations):
    material_id = _receive(db, locations["A"], quantity=10)

    with pytest.raises(InsufficientQuantityError):
        _ledger(db).remove(RemoveRequest(material_id=material_id, quantity=11))

    assert db.get(Material, material_id).quantity == 10


def test_remove_unknown_material_is_not_found(db, locations):
    with pytest.raises(NotFoundError):
        _ledger(db).remove(RemoveRequest(material_id=12345, quantity=1))


@pytest.mark.parametrize(
    "payload",
    [
        AdjustRequest(),
        AdjustRequest(is_primary=True, quantity_delta=5),
        AdjustRequest(quantity_delta=0),
    ],
)
def test_adjust_requires_exactly_one_change(db, locations, payload):
    material_id = _receive(db, locations["A"])

    with pytest.raises(InvalidInputError):
        _ledger(db).adjust(material_id, payload)


def test_adjust_primary_flag_writes_no_ledger_entries(db, locations):
    material_id = _receive(db, locations["A"])
    entries_before = db.scalar(select(func.count()).select_from(TransactionLog))

    _ledger(db).adjust(material_id, AdjustRequest(is_primary=True))

    db.expire_all()
    assert db.get(Material, material_id).is_primary is True
    assert db.scalar(select(func.count()).select_from(TransactionLog)) == entries_before


def test_adjust_positive_delta_opens_zero_cost_lot(db, locations):
    material_id = _receive(db, locations["A"])

    _ledger(db).adjust(material_id, AdjustRequest(quantity_delta=5, job_ticket="COUNT-1"))

    db.expire_all()
    assert db.get(Material, material_id).quantity == 105
    assert _lots(db, material_id) == [(100, Decimal("2")), (5, Decimal("0"))]
    entry = db.scalar(select(TransactionLog).where(TransactionLog.job_ticket == "COUNT-1"))
    assert entry.quantity_change == 5
    assert entry.notes == "Quantity adjusted"
    _assert_books_balance(db)


def test_adjust_negative_delta_consumes_lots(db, locations):
    material_id = _receive(db, locations["A"])

    _ledger(db).adjust(material_id, AdjustRequest(quantity_delta=-30))

    db.expire_all()
    assert db.get(Material, material_id).quantity == 70
    assert _lots(db, material_id) == [(70, Decimal("2"))]
    _assert_books_balance(db)


def test_adjust_below_zero_is_rejected(db, locations):
    material_id = _receive(db, locations["A"])
    before = _snapshot(db)

    with pytest.raises(InsufficientQuantityError):
        _ledger(db).adjust(material_id, AdjustRequest(quantity_delta=-101))

    assert _snapshot(db) == before


@pytest.mark.parametrize("payload", [AdjustRequest(is_primary=True), AdjustRequest(quantity_delta=3)])
def test_adjust_unknown_material_is_not_found(db, locations, payload):
    with pytest.raises(NotFoundError):
        _ledger(db).adjust(777, payload)


def test_storage_failure_rolls_back_the_whole_operation(db, locations, monkeypatch):
    shipping_id = _queue(db)

    def broken(*args, **kwargs):
        raise OperationalError("INSERT INTO transactions_log", {}, Exception("disk I/O error"))

    monkeypatch.setattr(LedgerRepository, "add_transaction", broken)

    with pytest.raises(DBError) as exc:
        _ledger(db).receive(ReceiveRequest(shipping_id=shipping_id, location_id=locations["A"], quantity=100))

    assert exc.value.status_code == 503
    db.expire_all()
    assert db.scalar(select(func.count()).select_from(Material)) == 0
    assert db.scalar(select(func.count()).select_from(Price)) == 0
    assert db.get(IncomingMaterial, shipping_id).quantity == 100


def test_lots_report_matching_audit_balance(db, locations):
    material_id = _receive(db, locations["A"], quantity=5, cost="2.00")
    _receive(db, locations["A"], quantity=5, cost="3.00")
    ledger = _ledger(db)
    ledger.remove(RemoveRequest(material_id=material_id, quantity=6))

    lots = ledger.lots(material_id)

    assert [(lot.quantity, lot.audit_balance, lot.balanced) for lot in lots] == [(0, 0, True), (4, 4, True)]


def test_ledger_entries_cannot_be_rewritten(db, locations):
    _receive(db, locations["A"])
    entry = db.scalar(select(TransactionLog))

    entry.quantity_change = 1
    with pytest.raises(LedgerError):
        db.flush()
    db.rollback()

    db.delete(db.scalar(select(TransactionLog)))
    with pytest.raises(LedgerError):
        db.flush()
    db.rollback()

    assert db.scalar(select(TransactionLog.quantity_change)) == 100


def test_receive_applies_primary_flag_and_serial_range(db, locations):
    shipping_id = _queue(db)

    material_id = _ledger(db).receive(
        ReceiveRequest(
            shipping_id=shipping_id,
            location_id=locations["A"],
            quantity=100,
            serial_number_range="1000-1099",
            is_primary=True,
        )
    )

    material = db.get(Material, material_id)
    assert material.is_primary is True
    assert material.serial_number_range == "1000-1099"
    entry = db.scalar(select(TransactionLog))
    assert entry.serial_number_range == "1000-1099"


def test_move_into_occupied_location_merges_rows_and_lots(db, locations):
    source_id = _receive(db, locations["A"], quantity=5, cost="2.00")
    _receive(db, locations["A"], quantity=5, cost="7.00")
    destination_id = _receive(db, locations["B"], quantity=4, cost="2.00")

    result = _ledger(db).move(MoveRequest(material_id=source_id, location_id=locations["B"], quantity=10))

    assert result.material_id == destination_id
    assert db.scalar(select(func.count()).select_from(Material)) == 2
    destination = db.get(Material, destination_id)
    assert destination.quantity == 14
    assert _lots(db, destination_id) == [(9, Decimal("2")), (5, Decimal("7"))]
    source = db.get(Material, source_id)
    assert source.quantity == 0
    assert source.location_id is None
    _assert_books_balance(db)


def test_over_precise_cost_is_rejected_at_intake():
    with pytest.raises(ValidationError):
        IncomingMaterialCreate(
            stock_id="X1", quantity=10, cost=Decimal("2.12345"), material_type="CHIPS", owner="ACME"
        )


def test_move_keeps_value_of_four_decimal_costs(db, locations):
    source_id = _receive(db, locations["A"], quantity=10, cost="2.1235")

    result = _ledger(db).move(MoveRequest(material_id=source_id, location_id=locations["B"], quantity=10))

    assert [(lot.quantity, lot.unit_cost) for lot in result.lots] == [(10, Decimal("2.1235"))]
    assert sum(q * c for q, c in _lots(db, result.material_id)) == Decimal("21.235")


def test_lot_cost_is_rounded_to_column_scale_before_lookup(db, locations):
    material_id = _receive(db, locations["A"], quantity=10, cost="2.1235")
    repo = LedgerRepository(db)
    existing = db.scalar(select(Price.id).where(Price.material_id == material_id))

    lot_id = repo.upsert_lot(material_id, 3, Decimal("2.12345"))
    db.commit()

    assert lot_id == existing
    assert _lots(db, material_id) == [(13, Decimal("2.1235"))]


def test_adjust_up_on_off_shelf_material_is_rejected(db, locations):
    material_id = _receive(db, locations["A"], quantity=10)
    _ledger(db).remove(RemoveRequest(material_id=material_id, quantity=10))
    before = _snapshot(db)

    with pytest.raises(InvalidInputError) as exc:
        _ledger(db).adjust(material_id, AdjustRequest(quantity_delta=5))

    assert exc.value.status_code == 422
    assert "off-shelf" in exc.value.detail
    assert _snapshot(db) == before
