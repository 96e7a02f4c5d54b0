from __future__ import annotations

from collections.abc import Generator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from scopeguard.settings import get_settings


def configure_sqlite(engine: Engine) -> Engine:
    """
    Let SQLAlchemy own transaction boundaries on pysqlite.

    The driver otherwise delays BEGIN until the first DML statement, which breaks
    SAVEPOINT (used by best-effort side effects and insert fallbacks).
    """

    @event.listens_for(engine, "connect")
    def _sqlite_on_connect(dbapi_conn, _):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


_settings = get_settings()
_db_url = _settings.resolved_db_url()

engine = create_engine(
    _db_url,
    connect_args={"check_same_thread": False} if _db_url.startswith("sqlite") else {},
)
if _db_url.startswith("sqlite"):
    configure_sqlite(engine)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Main DB dependency.

    - The tenant of the authenticated caller is stored in `Session.info["tenant_id"]`.
    - `scopeguard/db/filters.py` reads it and hides other tenants' projects and
      departments, so a cross-tenant id behaves exactly like a missing one.
    """

    db = SessionLocal()
    try:
        claims = getattr(getattr(request, "state", None), "claims", None)
        if claims is not None:
            db.info["tenant_id"] = claims.organization_id
        yield db
    finally:
        db.close()
