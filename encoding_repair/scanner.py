"""
Table-level scan and repair.

Every table goes through the same steps: confirm it exists, reflect it,
read the identifier column plus the candidate text columns, then run the
detector over each field. The repair pass additionally writes back one row
at a time, each row in its own transaction, touching only the columns whose
value changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import MetaData, Table, inspect, select
from sqlalchemy.engine import Connection, RowMapping
from sqlalchemy.exc import SQLAlchemyError

from .models import FieldChange, SoftFailure, TableSpec, TableStatus
from .normalize import coerce_text, is_corrupted, is_invalid_utf8, repair

logger = logging.getLogger(__name__)


class TextField(NamedTuple):
    table: str
    row_id: Any
    column: str
    value: str
    # stored as bytes that are not UTF-8; rewritten even if repair is a no-op
    invalid_utf8: bool = False


@dataclass
class TableScan:
    status: TableStatus
    fields: List[TextField] = field(default_factory=list)
    failure: Optional[SoftFailure] = None
    table: Optional[Table] = None


@dataclass
class TableFix:
    status: TableStatus
    rows_fixed: int = 0
    changes: List[FieldChange] = field(default_factory=list)
    failures: List[SoftFailure] = field(default_factory=list)


class _Loaded(NamedTuple):
    table: Table
    id_column: str
    columns: List[str]
    rows: Sequence[RowMapping]


def _resolve_columns(table: Table, spec: TableSpec) -> Tuple[str, List[str]]:
    if spec.id_column not in table.c:
        raise ValueError(f"identifier column {spec.id_column!r} not in table {spec.name!r}")
    columns = [c for c in spec.columns if c in table.c and c != spec.id_column]
    missing = set(spec.columns) - set(columns) - {spec.id_column}
    if missing:
        logger.debug(f"Table {spec.name}: skipping absent columns {sorted(missing)}")
    return spec.id_column, columns


def _load(conn: Connection, spec: TableSpec, limit: Optional[int]) -> Optional[_Loaded]:
    """Reflect and read ``spec``'s table; None if it does not exist."""
    with conn.begin():
        if not inspect(conn).has_table(spec.name):
            return None
        table = Table(spec.name, MetaData(), autoload_with=conn)
        id_column, columns = _resolve_columns(table, spec)
        if not columns:
            return _Loaded(table, id_column, columns, [])

        stmt = select(table.c[id_column], *(table.c[c] for c in columns)).order_by(
            table.c[id_column]
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = conn.execute(stmt).mappings().all()

    return _Loaded(table, id_column, columns, rows)


def _examined(loaded: _Loaded) -> int:
    return sum(
        1 for row in loaded.rows for column in loaded.columns if row[column] is not None
    )


def _corrupted_fields(name: str, loaded: _Loaded) -> Iterator[TextField]:
    for row in loaded.rows:
        for column in loaded.columns:
            raw = row[column]
            text = coerce_text(raw)
            invalid = is_invalid_utf8(raw)
            if invalid or is_corrupted(text):
                yield TextField(name, row[loaded.id_column], column, text, invalid)


def scan_table(conn: Connection, spec: TableSpec, limit: Optional[int] = None) -> TableScan:
    """
    Find corrupted fields in one table without changing anything.

    A missing table is reported as ``not_found``; a table that cannot be
    read is reported as ``error`` with a soft failure attached.
    """
    try:
        loaded = _load(conn, spec, limit)
    except (SQLAlchemyError, ValueError) as e:
        logger.warning(f"Table {spec.name} could not be scanned: {e}")
        return TableScan(
            status=TableStatus(table=spec.name, status="error"),
            failure=SoftFailure(table=spec.name, error=str(e)),
        )

    if loaded is None:
        logger.info(f"Table {spec.name} not found, skipping")
        return TableScan(status=TableStatus(table=spec.name, status="not_found"))

    fields = list(_corrupted_fields(spec.name, loaded))
    logger.debug(f"Table {spec.name}: {len(loaded.rows)} rows, {len(fields)} corrupted fields")
    return TableScan(
        status=TableStatus(
            table=spec.name,
            status="checked",
            rows=len(loaded.rows),
            examined=_examined(loaded),
            corrupted=len(fields),
        ),
        fields=fields,
        table=loaded.table,
    )


def build_update(fields: Sequence[TextField]) -> dict:
    """
    Column -> repaired value for the fields that need writing.

    That is every field whose value changes, plus fields stored as non-UTF-8
    bytes, which are rewritten as text even when no pattern applied.
    """
    updates = {}
    for f in fields:
        fixed = repair(f.value)
        if fixed != f.value or f.invalid_utf8:
            updates[f.column] = fixed
    return updates


def fix_table(conn: Connection, spec: TableSpec) -> TableFix:
    """
    Repair every corrupted field in one table and write it back.

    Rows are updated one transaction at a time; a row that fails to write
    is rolled back and recorded, and the pass moves on.
    """
    scan = scan_table(conn, spec)
    result = TableFix(status=scan.status)
    if scan.failure is not None:
        result.failures.append(scan.failure)
    if not scan.fields:
        return result

    table = scan.table
    id_col = table.c[spec.id_column]

    by_row: dict = {}
    for f in scan.fields:
        by_row.setdefault(f.row_id, []).append(f)

    for row_id, fields in by_row.items():
        updates = build_update(fields)
        if not updates:
            continue
        if row_id is None:
            result.failures.append(
                SoftFailure(table=spec.name, error=f"row without {spec.id_column}, not updated")
            )
            continue

        try:
            with conn.begin():
                written = conn.execute(table.update().where(id_col == row_id).values(updates))
        except SQLAlchemyError as e:
            logger.warning(f"Table {spec.name} row {row_id}: write-back failed: {e}")
            result.failures.append(SoftFailure(table=spec.name, id=row_id, error=str(e)))
            continue

        if written.rowcount == 0:
            result.failures.append(
                SoftFailure(table=spec.name, id=row_id, error="row no longer exists")
            )
            continue

        result.rows_fixed += 1
        for f in fields:
            if f.column in updates:
                result.changes.append(
                    FieldChange(
                        table=spec.name,
                        id=row_id,
                        field=f.column,
                        before=f.value,
                        after=updates[f.column],
                    )
                )

    result.status.fixed = len(result.changes)
    logger.info(f"Table {spec.name}: {result.rows_fixed} rows fixed")
    return result
