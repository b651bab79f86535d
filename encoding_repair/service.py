"""
Store-wide operations behind the admin routes.

Each operation opens a single connection, walks the configured tables in
order and aggregates per-table results. Soft failures are collected; only a
store that cannot be opened at all stops the operation.
"""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.engine import Engine

from .db import connect
from .models import (
    CorruptionReport,
    CorruptionSample,
    DiagnosisReport,
    DiagnosisSample,
    FixResult,
    TableSpec,
)
from .normalize import char_codes, find_signatures, repair
from .rules import (
    DEFAULT_CHANGE_CAP,
    DEFAULT_DIAGNOSE_LIMIT,
    DEFAULT_SAMPLE_CAP,
    DIAGNOSE_SAMPLES_PER_TABLE,
)
from .scanner import fix_table, scan_table

logger = logging.getLogger(__name__)


def _signatures(f) -> list:
    names = find_signatures(f.value)
    if f.invalid_utf8:
        names.append("invalid_utf8")
    return names


def fix_one_field(text):
    """Repair a single value. No I/O."""
    return repair(text)


def check_corruption(
    engine: Engine,
    tables: Sequence[TableSpec],
    sample_cap: int = DEFAULT_SAMPLE_CAP,
) -> CorruptionReport:
    report = CorruptionReport()
    with connect(engine) as conn:
        for spec in tables:
            scan = scan_table(conn, spec)
            report.tables.append(scan.status)
            if scan.failure is not None:
                report.failures.append(scan.failure)
            report.total_corrupted += scan.status.corrupted

            for f in scan.fields:
                if len(report.samples_found) >= sample_cap:
                    break
                report.samples_found.append(
                    CorruptionSample(
                        table=f.table,
                        column=f.column,
                        id=f.row_id,
                        original=f.value,
                        fixed=repair(f.value),
                    )
                )

    logger.info(
        f"Corruption check: {report.total_corrupted} corrupted fields "
        f"across {len(tables)} tables"
    )
    return report


def fix_encoding(
    engine: Engine,
    tables: Sequence[TableSpec],
    change_cap: int = DEFAULT_CHANGE_CAP,
) -> FixResult:
    result = FixResult()
    with connect(engine) as conn:
        for spec in tables:
            fixed = fix_table(conn, spec)
            result.tables.append(fixed.status)
            result.failures.extend(fixed.failures)
            result.records_fixed += fixed.rows_fixed
            result.total_changes += len(fixed.changes)

            room = change_cap - len(result.changes)
            if room > 0:
                result.changes.extend(fixed.changes[:room])

    logger.info(
        f"Encoding fix: {result.records_fixed} rows fixed, "
        f"{result.total_changes} fields changed, {len(result.failures)} failures"
    )
    return result


def diagnose_corruption(
    engine: Engine,
    tables: Sequence[TableSpec],
    limit: int = DEFAULT_DIAGNOSE_LIMIT,
    per_table: int = DIAGNOSE_SAMPLES_PER_TABLE,
) -> DiagnosisReport:
    """
    Read a bounded sample of each table and describe what is corrupted.

    Each sample carries the value's code points and the signature classes
    it matched, so an administrator can tell the corruption kinds apart.
    """
    report = DiagnosisReport()
    with connect(engine) as conn:
        for spec in tables:
            scan = scan_table(conn, spec, limit=limit)
            report.tables.append(scan.status)
            if scan.failure is not None:
                report.failures.append(scan.failure)
            if not scan.fields:
                continue

            report.corrupted_samples[spec.name] = [
                DiagnosisSample(
                    id=f.row_id,
                    field=f.column,
                    value=f.value,
                    char_codes=char_codes(f.value),
                    signatures=_signatures(f),
                )
                for f in scan.fields[:per_table]
            ]

    return report
