#!/usr/bin/env python3
"""Database overview and integrity checks for the rental marketplace."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


EXPECTED_COLUMNS: dict[str, list[str]] = {
    "products": ["id", "vendor_id", "name"],
    "variants": ["id", "product_id", "stock_quantity", "price_hourly", "price_daily", "price_weekly", "price_monthly"],
    "orders": ["id", "order_number", "customer_id", "vendor_id", "status", "total_amount", "late_fee_amount"],
    "reservations": ["id", "order_id", "variant_id", "start_date", "end_date", "quantity", "status"],
    "pickups": ["id", "order_id", "reservation_id", "picked_up_at"],
    "returns": ["id", "order_id", "reservation_id", "returned_at", "is_late", "late_fee"],
    "invoices": ["id", "order_id", "invoice_number", "status", "total_amount", "amount_due"],
    "payments": ["id", "invoice_id", "amount"],
    "notifications": ["id", "user_id", "is_read"],
    "system_settings": ["setting_key", "setting_value", "data_type"],
}

# Pairs of blocking reservations on one variant whose windows overlap. The
# stock invariant holds when no start instant has more demand than stock.
OVERBOOKED_SQL = """
    SELECT r.variant_id, r.start_date, SUM(o.quantity) AS demand, v.stock_quantity
    FROM reservations r
    JOIN reservations o
      ON o.variant_id = r.variant_id
     AND o.status IN ('RESERVED', 'ACTIVE')
     AND o.start_date <= r.start_date
     AND o.end_date > r.start_date
    JOIN variants v ON v.id = r.variant_id
    WHERE r.status IN ('RESERVED', 'ACTIVE')
    GROUP BY r.id, r.variant_id, r.start_date, v.stock_quantity
    HAVING SUM(o.quantity) > v.stock_quantity
"""


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


def run_schema_checks(engine: Engine) -> list[CheckResult]:
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in tables:
            results.append(CheckResult(f"table:{table}", False, "missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(table)}
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
    checks: list[CheckResult] = []

    overbooked = _rows(engine, OVERBOOKED_SQL)
    checks.append(
        CheckResult(
            "reservations:stock_invariant",
            not overbooked,
            "ok" if not overbooked else "overbooked variants=" + ",".join(sorted({str(row[0]) for row in overbooked})),
        )
    )

    stranded = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM reservations r
        JOIN orders o ON o.id = r.order_id
        WHERE o.status = 'CANCELLED' AND r.status IN ('RESERVED', 'ACTIVE')
        """,
    )
    checks.append(
        CheckResult(
            "reservations:held_by_cancelled_order",
            int(stranded or 0) == 0,
            f"count={int(stranded or 0)}",
        )
    )

    unreturned = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM reservations r
        JOIN orders o ON o.id = r.order_id
        WHERE o.status IN ('RETURNED', 'COMPLETED') AND r.status IN ('RESERVED', 'ACTIVE')
        """,
    )
    checks.append(
        CheckResult(
            "reservations:open_on_returned_order",
            int(unreturned or 0) == 0,
            f"count={int(unreturned or 0)}",
        )
    )

    missing_invoice = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM orders o
        LEFT JOIN invoices i ON i.order_id = o.id
        WHERE o.status IN ('CONFIRMED', 'PICKED_UP', 'RETURNED', 'COMPLETED') AND i.id IS NULL
        """,
    )
    checks.append(
        CheckResult(
            "invoices:missing_for_confirmed_order",
            int(missing_invoice or 0) == 0,
            f"count={int(missing_invoice or 0)}",
        )
    )
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    tables = set(inspect(engine).get_table_names())
    for table in EXPECTED_COLUMNS:
        if table not in tables:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rental marketplace DB overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    args = parser.parse_args(argv)

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = create_engine(db_url, pool_pre_ping=True, future=True)
        _scalar(engine, "SELECT 1")
    except SQLAlchemyError as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    schema = run_schema_checks(engine)
    _print_results("Schema Checks", schema)
    if not all(row.ok for row in schema):
        return 1
    integrity = run_integrity_checks(engine)
    _print_results("Integrity Checks", integrity)
    _print_row_counts(engine)
    return 0 if all(row.ok for row in integrity) else 1


if __name__ == "__main__":
    sys.exit(main())
