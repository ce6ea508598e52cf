from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_DIALECT_INSERT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_row(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
    preserve: Iterable[str] = ("id", "created_at"),
) -> Any:
    """
    INSERT ... ON CONFLICT (conflict_columns) DO UPDATE and return the row's
    primary key. Columns listed in ``preserve`` keep their stored value.
    """
    dialect = db.get_bind().dialect.name
    try:
        insert = _DIALECT_INSERT[dialect]
    except KeyError:
        raise RuntimeError(f"upsert not supported on dialect {dialect}") from None

    table = model.__table__
    now = datetime.utcnow()
    row = dict(values)
    if "id" in table.c and "id" not in row:
        row["id"] = uuid.uuid4()
    if "created_at" in table.c:
        row.setdefault("created_at", now)
    if "updated_at" in table.c:
        row["updated_at"] = now

    conflict_columns = list(conflict_columns)
    keep = set(preserve) | set(conflict_columns)
    pk = list(table.primary_key.columns)[0]

    stmt = insert(table).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c[name] for name in conflict_columns],
        set_={name: stmt.excluded[name] for name in row if name not in keep},
    ).returning(pk)
    return db.execute(stmt).scalar_one()
