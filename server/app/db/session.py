from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings


def _build_engine(uri: str) -> Engine:
    if not uri.startswith("sqlite"):
        return create_engine(uri, pool_pre_ping=True)

    eng = create_engine(uri, connect_args={"check_same_thread": False})

    # pysqlite's implicit transaction handling breaks SAVEPOINT; take over BEGIN ourselves.
    @event.listens_for(eng, "connect")
    def _sqlite_connect(dbapi_connection: object, _record: object) -> None:
        dbapi_connection.isolation_level = None  # type: ignore[attr-defined]

    @event.listens_for(eng, "begin")
    def _sqlite_begin(conn: Connection) -> None:
        _ = conn.exec_driver_sql("BEGIN")

    return eng


engine = _build_engine(settings.sqlalchemy_database_uri)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
