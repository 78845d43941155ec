from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from printflow import database, models  # noqa: F401
from printflow.deps import get_clock
from printflow.main import create_app

NOW = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def tick(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def db_session(tmp_path: Path):
    db_path = tmp_path / "test_printflow.db"
    database.reset_engine(f"sqlite:///{db_path}")
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(tmp_path: Path, clock: FakeClock):
    db_path = tmp_path / "test_api_printflow.db"
    database.reset_engine(f"sqlite:///{db_path}")
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    app = create_app()
    app.dependency_overrides[get_clock] = clock
    with TestClient(app) as test_client:
        yield test_client
