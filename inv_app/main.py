from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

if __name__ == "__main__" and __package__ is None:
    sys.path.append(str(Path(__file__).resolve().parents[1]))

from inv_app.auth import ensure_default_users
from inv_app.db import Base, engine, get_session
from inv_app.models import MaterialUsageReason
from inv_app.routers.auth import router as auth_router
from inv_app.routers.health import router as health_router
from inv_app.routers.incoming import router as incoming_router
from inv_app.routers.locations import router as locations_router
from inv_app.routers.materials import router as materials_router
from inv_app.routers.requests import router as requests_router
from inv_app.utils import get_session_secret

logger = logging.getLogger(__name__)

DEFAULT_USAGE_REASONS = [
    ("USAGE", "Used in production", 1),
    ("SPOILAGE", "Spoiled or damaged", 2),
]


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def seed_usage_reasons(db: Session) -> None:
    existing = set(db.scalars(select(MaterialUsageReason.code)))
    for reason_type, description, code in DEFAULT_USAGE_REASONS:
        if code not in existing:
            db.add(MaterialUsageReason(reason_type=reason_type, description=description, code=code))
    db.commit()


def _run_startup_tasks() -> None:
    """Creates the schema and seeds users and usage reasons."""
    Base.metadata.create_all(bind=engine)

    db = get_session()
    try:
        ensure_default_users(db)
        seed_usage_reasons(db)
    finally:
        db.close()
    logger.info("Startup tasks completed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    _run_startup_tasks()
    yield


app = FastAPI(title="Inventory Ledger", lifespan=lifespan)

app.add_middleware(
    SessionMiddleware,
    secret_key=get_session_secret(),
    session_cookie="inv_app_session",
    max_age=60 * 60 * 24 * 7,
    same_site="lax",
    https_only=False,
)

app.include_router(health_router)
app.include_router(auth_router)
app.include_router(materials_router)
app.include_router(incoming_router)
app.include_router(locations_router)
app.include_router(requests_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "inv_app.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
    )
