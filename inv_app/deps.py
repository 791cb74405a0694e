from __future__ import annotations

from collections.abc import Generator

from sqlalchemy.orm import Session

from inv_app.db import get_session
from inv_app.ledger_config import LedgerConfig, load_ledger_config


def session_dep() -> Generator[Session, None, None]:
    db = get_session()
    try:
        yield db
    finally:
        db.close()


def ledger_config_dep() -> LedgerConfig:
    return load_ledger_config()
