from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import inv_app.db as database
import inv_app.main as main
from inv_app.db import Base, make_engine
from inv_app.models import Location


def _make_sessionmaker(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test_inv_app.db'}")
    return engine, sessionmaker(bind=engine, autoflush=False, autocommit=False)


def _add_locations(testing_session) -> dict[str, int]:
    with testing_session() as db:
        rows = [
            Location(name="A-01", warehouse_name="Main"),
            Location(name="B-01", warehouse_name="Main"),
            Location(name="V-01", warehouse_name="Vault"),
        ]
        db.add_all(rows)
        db.commit()
        return {"A": rows[0].id, "B": rows[1].id, "V": rows[2].id}


@pytest.fixture()
def session_factory(tmp_path):
    engine, testing_session = _make_sessionmaker(tmp_path)
    Base.metadata.create_all(bind=engine)
    with testing_session() as db:
        main.seed_usage_reasons(db)
    yield testing_session
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def locations(session_factory) -> dict[str, int]:
    return _add_locations(session_factory)


@pytest.fixture()
def client_and_db(tmp_path, monkeypatch):
    engine, testing_session = _make_sessionmaker(tmp_path)

    monkeypatch.setattr(database, "SessionLocal", testing_session)
    monkeypatch.setattr(main, "engine", engine)
    monkeypatch.setenv("LEDGER_CONFIG_PATH", str(tmp_path / "missing.conf"))

    with TestClient(main.app) as client:
        locs = _add_locations(testing_session)
        login = client.post("/auth/login", json={"username": "admin", "password": "admin"})
        assert login.status_code == 200
        yield client, testing_session, locs
    engine.dispose()
