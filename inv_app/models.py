from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from inv_app.db import Base
from inv_app.errors import LedgerError


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="operator", server_default="operator")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class AuditLog(Base):
    """Operator action log. The inventory ledger itself lives in TransactionLog."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), index=True)
    entity_type: Mapped[str] = mapped_column(String(64), index=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column("location_id", primary_key=True)
    name: Mapped[str] = mapped_column(String(128), index=True)
    warehouse_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


class MaterialUsageReason(Base):
    __tablename__ = "material_usage_reasons"

    id: Mapped[int] = mapped_column("reason_id", primary_key=True)
    reason_type: Mapped[str] = mapped_column(String(32), index=True)
    description: Mapped[str] = mapped_column(String(255))
    code: Mapped[int] = mapped_column(Integer, unique=True)


class IncomingMaterial(Base):
    __tablename__ = "incoming_materials"

    id: Mapped[int] = mapped_column("shipping_id", primary_key=True)
    program_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    stock_id: Mapped[str] = mapped_column(String(64), index=True)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    min_required_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_required_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    material_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    material_type: Mapped[str] = mapped_column("type", String(32), index=True)
    owner: Mapped[str] = mapped_column(String(64))
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_incoming_quantity_positive"),)


class Material(Base):
    __tablename__ = "materials"

    id: Mapped[int] = mapped_column("material_id", primary_key=True)
    stock_id: Mapped[str] = mapped_column(String(64), index=True)
    location_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("locations.location_id"), nullable=True, index=True
    )
    program_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    material_type: Mapped[str] = mapped_column(String(32), index=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    min_required_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_required_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    material_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    owner: Mapped[str] = mapped_column(String(64))
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    serial_number_range: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), index=True
    )

    __table_args__ = (
        UniqueConstraint("stock_id", "location_id", "owner", name="ux_materials_stock_location_owner"),
        CheckConstraint("quantity >= 0", name="ck_materials_quantity_non_negative"),
        CheckConstraint("location_id IS NOT NULL OR quantity = 0", name="ck_materials_off_shelf_empty"),
    )


class Price(Base):
    """A cost lot: the part of a material's quantity acquired at one unit cost."""

    __tablename__ = "prices"

    id: Mapped[int] = mapped_column("price_id", primary_key=True)
    material_id: Mapped[int] = mapped_column(ForeignKey("materials.material_id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)

    __table_args__ = (
        UniqueConstraint("material_id", "cost", name="ux_prices_material_cost"),
        CheckConstraint("quantity >= 0", name="ck_prices_quantity_non_negative"),
    )


class TransactionLog(Base):
    __tablename__ = "transactions_log"

    id: Mapped[int] = mapped_column("transaction_id", primary_key=True)
    price_id: Mapped[int] = mapped_column(ForeignKey("prices.price_id"), index=True)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    job_ticket: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    reason_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("material_usage_reasons.reason_id"), nullable=True, index=True
    )
    serial_number_range: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class RequestedMaterial(Base):
    __tablename__ = "requested_materials"

    id: Mapped[int] = mapped_column("request_id", primary_key=True)
    stock_id: Mapped[str] = mapped_column(String(64), index=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    quantity_requested: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)


@event.listens_for(TransactionLog, "before_update")
@event.listens_for(TransactionLog, "before_delete")
def _ledger_entries_are_append_only(mapper, connection, target):
    raise LedgerError(f"transactions_log entry {target.id} is append-only")
