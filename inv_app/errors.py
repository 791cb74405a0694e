from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


class LedgerError(HTTPException):
    """Base class for failures raised by the ledger and its collaborators.

    Subclasses fix the HTTP status so routers can let them propagate as-is.
    """

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(status_code=type(self).status_code, detail=detail)


class NotFoundError(LedgerError):
    status_code = 404

    def __init__(self, entity: str, entity_id: object = None):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {entity_id} not found")


class InsufficientQuantityError(LedgerError):
    status_code = 409

    def __init__(self, requested: int, available: int, action: str = "requested"):
        self.requested = requested
        self.available = available
        super().__init__(
            f"The {action} quantity ({requested}) is more than the actual one ({available})"
        )


class InvalidInputError(LedgerError):
    status_code = 422


class DBError(LedgerError):
    status_code = 503

    def __init__(self, detail: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(detail)


class ConflictError(DBError):
    status_code = 409
