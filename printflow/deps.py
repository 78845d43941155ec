from __future__ import annotations

from datetime import datetime
from typing import Generator

from sqlalchemy.orm import Session

from printflow import database
from printflow.domain import utcnow


def get_db() -> Generator[Session, None, None]:
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> datetime:
    return utcnow()
