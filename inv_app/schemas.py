from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator


class ConsumedLot(NamedTuple):
    """Quantity taken from one cost lot, tagged with that lot's unit cost."""

    quantity: int
    unit_cost: Decimal


class IncomingMaterialCreate(BaseModel):
    program_id: Optional[int] = None
    stock_id: str
    cost: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=4)
    quantity: int
    min_required_quantity: int = 0
    max_required_quantity: int = 0
    description: Optional[str] = None
    material_status: Optional[str] = None
    material_type: str
    owner: str
    user_id: Optional[int] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("quantity must be greater than 0")
        return v

    @field_validator("cost")
    @classmethod
    def cost_must_not_be_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("cost must be >= 0")
        return v


class IncomingMaterialRead(BaseModel):
    id: int
    program_id: Optional[int]
    stock_id: str
    cost: Decimal
    quantity: int
    min_required_quantity: int
    max_required_quantity: int
    description: Optional[str]
    material_status: Optional[str]
    material_type: str
    owner: str
    user_id: Optional[int]

    model_config = {"from_attributes": True}


class IncomingMaterialCounts(BaseModel):
    warehouse: int
    vault: int


class ReceiveRequest(BaseModel):
    shipping_id: int
    location_id: int
    quantity: int
    notes: Optional[str] = None
    serial_number_range: Optional[str] = None
    is_primary: Optional[bool] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("quantity must be greater than 0")
        return v


class MoveRequest(BaseModel):
    material_id: int
    location_id: int
    quantity: int
    notes: Optional[str] = None
    serial_number_range: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("quantity must be greater than 0")
        return v


class RemoveRequest(BaseModel):
    material_id: int
    quantity: int
    job_ticket: Optional[str] = None
    serial_number_range: Optional[str] = None
    reason_id: Optional[int] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("quantity must be greater than 0")
        return v


class AdjustRequest(BaseModel):
    is_primary: Optional[bool] = None
    quantity_delta: Optional[int] = None
    job_ticket: Optional[str] = None


class StatusUpdate(BaseModel):
    stock_id: str
    material_status: str


class ConsumedLotRead(BaseModel):
    quantity: int
    unit_cost: Decimal


class ReceiveResult(BaseModel):
    material_id: int


class LedgerResult(BaseModel):
    material_id: int
    job_ticket: Optional[str] = None
    lots: list[ConsumedLotRead] = Field(default_factory=list)


class MaterialRead(BaseModel):
    id: int
    stock_id: str
    location_id: Optional[int]
    location_name: Optional[str] = None
    warehouse_name: Optional[str] = None
    program_id: Optional[int]
    material_type: str
    description: Optional[str]
    notes: Optional[str]
    quantity: int
    min_required_quantity: int
    max_required_quantity: int
    material_status: Optional[str]
    owner: str
    is_primary: bool
    serial_number_range: Optional[str]
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MaterialGroupRead(BaseModel):
    program_id: Optional[int]
    stock_id: str
    description: Optional[str]
    material_status: Optional[str]
    quantity: int


class LotRead(BaseModel):
    id: int
    quantity: int
    cost: Decimal
    audit_balance: int
    balanced: bool


class TransactionRead(BaseModel):
    material_id: int
    stock_id: str
    location_id: Optional[int]
    location_name: Optional[str]
    warehouse_name: Optional[str]
    quantity: int
    job_ticket: Optional[str]


class LocationRead(BaseModel):
    id: int
    name: str
    warehouse_name: Optional[str]

    model_config = {"from_attributes": True}


class UsageReasonRead(BaseModel):
    id: int
    reason_type: str
    description: str
    code: int

    model_config = {"from_attributes": True}


class RequestedItem(BaseModel):
    stock_id: str
    description: Optional[str] = None
    quantity: int = 0


class MaterialRequestCreate(BaseModel):
    materials: list[RequestedItem]
    user_id: Optional[int] = None


class RequestedMaterialUpdate(BaseModel):
    quantity_used: int = 0
    status: str
    notes: Optional[str] = None


class RequestedMaterialRead(BaseModel):
    id: int
    stock_id: str
    description: Optional[str]
    quantity_requested: int
    quantity_used: int
    status: str
    notes: Optional[str]
    updated_at: datetime
    requested_at: datetime
    user_id: Optional[int]
    username: Optional[str] = None

    model_config = {"from_attributes": True}


class LoginRequest(BaseModel):
    username: str
    password: str
