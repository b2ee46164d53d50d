"""Natural-key upserts for metric and campaign tables.

WHAT:
    INSERT ... ON CONFLICT (natural key) DO UPDATE, in fixed-size batches,
    for PostgreSQL (production) and SQLite (tests/dev).

WHY:
    Repeated syncs of an overlapping window must overwrite, not duplicate,
    and concurrent writers (bulk sync vs. webhook) must converge on
    last-writer-wins without any locking.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adsync.errors import StorageWriteFailure

logger = logging.getLogger(__name__)


def chunked(rows: Sequence[Dict[str, Any]], size: int) -> Iterator[List[Dict[str, Any]]]:
    """Split rows into lists of at most `size` items."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(rows), size):
        yield list(rows[start:start + size])


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StorageWriteFailure(f"Upsert not supported for dialect {dialect}")
    return insert


def upsert_rows(
    db: Session,
    model,
    rows: Sequence[Dict[str, Any]],
    *,
    conflict_columns: Sequence[str],
    batch_size: int = 100,
) -> int:
    """Upsert `rows` into `model`'s table keyed by `conflict_columns`.

    All rows must share the same keys. Non-key columns present in the rows
    are overwritten on conflict.

    Returns:
        Number of rows written.

    Raises:
        StorageWriteFailure: any database error; the caller decides whether
            to roll back.
    """
    if not rows:
        return 0

    insert = _dialect_insert(db)
    update_columns = [key for key in rows[0].keys() if key not in conflict_columns]
    written = 0

    try:
        for batch in chunked(rows, batch_size):
            stmt = insert(model).values(batch)
            if update_columns:
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(conflict_columns),
                    set_={column: stmt.excluded[column] for column in update_columns},
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
            db.execute(stmt)
            written += len(batch)
            logger.debug("[UPSERT] %s: wrote batch of %d", model.__tablename__, len(batch))
    except SQLAlchemyError as e:
        logger.error("[UPSERT] %s: batch failed after %d rows: %s", model.__tablename__, written, e)
        raise StorageWriteFailure(f"Failed to store {model.__tablename__} data: {e}") from e

    return written
