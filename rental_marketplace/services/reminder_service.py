from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_marketplace.models.rental_models import Order, Reservation
from rental_marketplace.models.statuses import OrderStatus, ReservationStatus
from rental_marketplace.services import notification_service
from rental_marketplace.services.pricing_service import utcnow

REMINDER_LOGGER = logging.getLogger("rental_marketplace.reminders")


def find_due_returns(db: Session, days_ahead: int = 2, today: date | None = None) -> list[dict]:
    """Active reservations on picked-up orders that end ``days_ahead`` days from ``today``.

    Read only. On SQLite, pass a session from ``build_read_session_factory`` so
    the sweep stays off the writer lock.
    """
    target = (today or utcnow().date()) + timedelta(days=days_ahead)
    window_start = datetime(target.year, target.month, target.day)
    window_end = window_start + timedelta(days=1)

    rows = db.execute(
        select(Order, Reservation)
        .join(Reservation, Reservation.OrderID == Order.OrderID)
        .where(Order.Status == OrderStatus.PICKED_UP)
        .where(Reservation.Status == ReservationStatus.ACTIVE)
        .where(Reservation.EndDate >= window_start)
        .where(Reservation.EndDate < window_end)
        .order_by(Order.OrderID, Reservation.ReservationID)
    ).all()

    due: dict[int, dict] = {}
    for order, reservation in rows:
        entry = due.setdefault(
            order.OrderID,
            {
                "order_id": order.OrderID,
                "order_number": order.OrderNumber,
                "customer_id": order.CustomerID,
                "end_date": reservation.EndDate,
                "reservation_ids": [],
            },
        )
        entry["reservation_ids"].append(reservation.ReservationID)
        entry["end_date"] = min(entry["end_date"], reservation.EndDate)
    return list(due.values())


def send_return_reminders(
    db: Session,
    days_ahead: int = 2,
    today: date | None = None,
    dry_run: bool = False,
    reader: Session | None = None,
) -> int:
    due = find_due_returns(reader if reader is not None else db, days_ahead=days_ahead, today=today)
    if reader is not None:
        # Drop the read snapshot before notify starts writing.
        reader.rollback()
    sent = 0
    for entry in due:
        if dry_run:
            REMINDER_LOGGER.info("Would remind customer_id=%s order=%s", entry["customer_id"], entry["order_number"])
            continue
        notification = notification_service.notify(
            db,
            entry["customer_id"],
            "WARNING",
            "Return Reminder",
            f"Your rental {entry['order_number']} is due for return on {entry['end_date']:%Y-%m-%d}.",
            f"/orders/{entry['order_id']}",
        )
        if notification is not None:
            sent += 1
    REMINDER_LOGGER.info("Return reminders due=%s sent=%s days_ahead=%s", len(due), sent, days_ahead)
    return sent
