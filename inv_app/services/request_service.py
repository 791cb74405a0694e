from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inv_app.errors import DBError, InvalidInputError, NotFoundError
from inv_app.models import RequestedMaterial, User
from inv_app.schemas import (
    MaterialRequestCreate,
    RequestedMaterialRead,
    RequestedMaterialUpdate,
)
from inv_app.utils import utcnow

logger = logging.getLogger(__name__)

PENDING = "pending"


class RequestService:
    """Pull requests for stock raised from the floor."""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self._db = db
        self._now = clock or utcnow

    def request(self, payload: MaterialRequestCreate) -> list[RequestedMaterial]:
        now = self._now()
        rows = [
            RequestedMaterial(
                stock_id=item.stock_id.strip(),
                description=item.description,
                quantity_requested=item.quantity,
                quantity_used=0,
                status=PENDING,
                notes="Needs to be delivered",
                updated_at=now,
                requested_at=now,
                user_id=payload.user_id,
            )
            for item in payload.materials
            if item.quantity != 0
        ]
        if not rows:
            raise InvalidInputError("At least one material with a quantity is required")

        self._db.add_all(rows)
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.exception("request materials failed with a storage error")
            raise DBError("request materials failed: storage error", e) from e
        for row in rows:
            self._db.refresh(row)
        logger.info(f"Requested {len(rows)} materials for user {payload.user_id}")
        return rows

    def list(
        self,
        request_id: Optional[int] = None,
        stock_id: Optional[str] = None,
        status: Optional[str] = None,
        requested_from: Optional[datetime] = None,
        requested_to: Optional[datetime] = None,
    ) -> list[RequestedMaterialRead]:
        stmt = (
            select(RequestedMaterial, User.username)
            .select_from(RequestedMaterial)
            .outerjoin(User, User.id == RequestedMaterial.user_id)
        )
        if request_id is not None:
            stmt = stmt.where(RequestedMaterial.id == request_id)
        if stock_id:
            stmt = stmt.where(RequestedMaterial.stock_id.ilike(f"%{stock_id.strip()}%"))
        if status:
            stmt = stmt.where(RequestedMaterial.status == status)
        if requested_from:
            stmt = stmt.where(RequestedMaterial.requested_at >= requested_from)
        if requested_to:
            stmt = stmt.where(RequestedMaterial.requested_at <= requested_to)

        out: list[RequestedMaterialRead] = []
        for row, username in self._db.execute(stmt.order_by(RequestedMaterial.requested_at, RequestedMaterial.id)).all():
            read = RequestedMaterialRead.model_validate(row)
            read.username = username
            out.append(read)
        return out

    def pending_count(self) -> int:
        total = self._db.scalar(
            select(func.count()).select_from(RequestedMaterial).where(RequestedMaterial.status == PENDING)
        )
        return int(total or 0)

    def update(self, request_id: int, payload: RequestedMaterialUpdate) -> RequestedMaterial:
        if not payload.status.strip():
            raise InvalidInputError("status must not be empty")

        row = self._db.get(RequestedMaterial, request_id)
        if row is None:
            raise NotFoundError("Requested material", request_id)

        row.quantity_used = int(row.quantity_used or 0) + payload.quantity_used
        row.status = payload.status
        row.notes = payload.notes
        row.updated_at = self._now()
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.exception("update requested material failed with a storage error")
            raise DBError("update requested material failed: storage error", e) from e
        self._db.refresh(row)
        return row
