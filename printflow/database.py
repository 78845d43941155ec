import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


def _database_url(raw_path: str | None = None) -> str:
    raw_path = raw_path or os.getenv("PRINTFLOW_DB_PATH", "printflow.db")
    if raw_path.startswith("sqlite://"):
        return raw_path
    return f"sqlite:///{raw_path}"


def _connect_args(url: str) -> dict:
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


DATABASE_URL = _database_url()

engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db() -> None:
    from printflow import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def reset_engine(raw_path: str) -> None:
    global DATABASE_URL, engine

    DATABASE_URL = _database_url(raw_path)
    engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL))
    SessionLocal.configure(bind=engine)
