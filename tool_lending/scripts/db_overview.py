#!/usr/bin/env python3
"""Database overview and integrity checks for the tool lending tracker."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from tool_lending.db.session import build_database_url, build_engine


EXPECTED_TABLES = [
    "tools",
    "borrow_records",
    "notifications",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "tools": ["id", "name", "description", "qr_code", "status", "created_at", "updated_at"],
    "borrow_records": [
        "id",
        "tool_id",
        "borrower_name",
        "borrower_location",
        "purpose",
        "borrowed_at",
        "returned_at",
        "status",
    ],
    "notifications": ["id", "type", "message", "tool_id", "borrow_record_id", "created_at", "read"],
}

INTEGRITY_QUERIES: dict[str, tuple[tuple[str, ...], str]] = {
    "borrow_records:multiple_active_per_tool": (
        ("borrow_records",),
        """
        SELECT COUNT(*)
        FROM (
            SELECT tool_id
            FROM borrow_records
            WHERE status = 'active'
            GROUP BY tool_id
            HAVING COUNT(*) > 1
        ) d
        """,
    ),
    "tools:borrowed_without_active_record": (
        ("tools", "borrow_records"),
        """
        SELECT COUNT(*)
        FROM tools t
        WHERE t.status = 'borrowed'
          AND NOT EXISTS (
              SELECT 1 FROM borrow_records br
              WHERE br.tool_id = t.id AND br.status = 'active'
          )
        """,
    ),
    "borrow_records:active_on_available_tool": (
        ("tools", "borrow_records"),
        """
        SELECT COUNT(*)
        FROM borrow_records br
        JOIN tools t ON t.id = br.tool_id
        WHERE br.status = 'active' AND t.status = 'available'
        """,
    ),
    "borrow_records:returned_without_timestamp": (
        ("borrow_records",),
        "SELECT COUNT(*) FROM borrow_records WHERE status = 'returned' AND returned_at IS NULL",
    ),
    "borrow_records:orphan_tool_id": (
        ("tools", "borrow_records"),
        """
        SELECT COUNT(*)
        FROM borrow_records br
        LEFT JOIN tools t ON t.id = br.tool_id
        WHERE t.id IS NULL
        """,
    ),
    "notifications:orphan_tool_id": (
        ("tools", "notifications"),
        """
        SELECT COUNT(*)
        FROM notifications n
        LEFT JOIN tools t ON t.id = n.tool_id
        WHERE t.id IS NULL
        """,
    ),
}


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _table_names(engine: Engine) -> set[str]:
    return set(inspect(engine).get_table_names())


def _column_names(engine: Engine, table_name: str) -> set[str]:
    return {str(column["name"]) for column in inspect(engine).get_columns(table_name)}


def run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    return [
        CheckResult(f"table:{table}", table in present, "present" if table in present else "missing")
        for table in EXPECTED_TABLES
    ]


def run_column_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in present:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = _column_names(engine, table)
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def run_integrity_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    checks: list[CheckResult] = []
    for name, (tables, sql) in INTEGRITY_QUERIES.items():
        if not all(table in present for table in tables):
            continue
        count = int(_scalar(engine, sql) or 0)
        checks.append(CheckResult(name, count == 0, f"count={count}"))
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = _table_names(engine)
    for table in EXPECTED_TABLES:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    present = _table_names(engine)

    if "tools" in present:
        rows = _rows(
            engine,
            "SELECT id, name, status, created_at FROM tools ORDER BY created_at DESC LIMIT :n",
            {"n": sample_size},
        )
        print("tools (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")

    if "borrow_records" in present:
        rows = _rows(
            engine,
            """
            SELECT id, tool_id, borrower_name, status, borrowed_at
            FROM borrow_records
            ORDER BY borrowed_at DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("borrow_records (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Tool lending DB overview")
    parser.add_argument("--db-url", default="", help="SQLAlchemy DB URL; defaults to DATABASE_URL / DB_* env vars.")
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args(argv)
    load_dotenv()

    db_url = (args.db_url or "").strip() or build_database_url()

    try:
        engine = build_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    existence = run_existence_checks(engine)
    columns = run_column_checks(engine)
    integrity = run_integrity_checks(engine)
    _print_results("Table Existence", existence)
    _print_results("Column Checks", columns)
    _print_results("Integrity Checks", integrity)
    _print_row_counts(engine)
    _print_samples(engine, args.samples)
    return 0 if all(row.ok for row in [*existence, *columns, *integrity]) else 1


if __name__ == "__main__":
    sys.exit(main())
