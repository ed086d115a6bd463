#!/usr/bin/env python3
"""Notify customers whose rentals are due back soon.

Intended to run once a day from cron or a scheduler.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import date

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from rental_marketplace.db.session import build_engine, build_read_session_factory, build_session_factory
from rental_marketplace.services.reminder_service import find_due_returns, send_return_reminders


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send return reminders for rentals ending soon.")
    parser.add_argument(
        "--db-url",
        default=None,
        help="SQLAlchemy DB URL; defaults to RENTAL_DB_URL env var.",
    )
    parser.add_argument(
        "--days-ahead",
        type=int,
        default=None,
        help="Remind for rentals ending this many days from today (default RENTAL_REMINDER_DAYS_AHEAD or 2).",
    )
    parser.add_argument("--date", dest="today", type=date.fromisoformat, default=None, help="Override today (YYYY-MM-DD).")
    parser.add_argument("--dry-run", action="store_true", help="List due rentals without notifying anyone.")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = _build_parser().parse_args(argv)

    db_url = (args.db_url or os.environ.get("RENTAL_DB_URL") or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    days_ahead = args.days_ahead
    if days_ahead is None:
        days_ahead = int(os.environ.get("RENTAL_REMINDER_DAYS_AHEAD") or "2")

    engine = build_engine(db_url)
    reader = build_read_session_factory(engine)()
    db = build_session_factory(engine)()
    try:
        if args.dry_run:
            for entry in find_due_returns(reader, days_ahead=days_ahead, today=args.today):
                print(f"{entry['order_number']} customer={entry['customer_id']} due={entry['end_date']:%Y-%m-%d}")
            return 0
        sent = send_return_reminders(db, days_ahead=days_ahead, today=args.today, reader=reader)
    except SQLAlchemyError as exc:
        print(f"Could not read due returns: {exc}")
        return 3
    finally:
        reader.close()
        db.close()
        engine.dispose()

    print(f"Sent {sent} reminder(s).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
