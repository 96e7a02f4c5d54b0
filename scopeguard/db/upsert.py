from __future__ import annotations

from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session


def insert_ignore(db: Session, model: type, values: dict[str, Any], conflict_columns: list[str]) -> bool:
    """
    Insert a row unless one already exists for `conflict_columns`.

    Returns True when a row was inserted. A uniqueness conflict means "already
    satisfied" and is not an error. PostgreSQL and SQLite do this atomically; other
    dialects fall back to check-then-insert.
    """

    bind = db.get_bind()
    dialect = bind.dialect.name if bind is not None else ""

    if dialect in ("postgresql", "sqlite"):
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        result = db.execute(stmt)
        return bool(result.rowcount)

    existing = db.execute(
        select(model).where(and_(*(getattr(model, col) == values[col] for col in conflict_columns)))
    ).first()
    if existing is not None:
        return False
    try:
        with db.begin_nested():
            row = model(**values)
            db.add(row)
            db.flush([row])
    except IntegrityError:
        # Lost the race to a concurrent insert of the same key.
        return False
    return True
