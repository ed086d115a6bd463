"""Stock allocation for variants over time windows.

Reservations hold ``quantity`` units of a variant for ``[start, end)``. While a
reservation is RESERVED or ACTIVE its units count against the variant's stock
for every overlapping request.

None of these functions commit. The order, pickup and return workflows call
them inside their own transaction so allocation and the status change land
together or not at all.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rental_marketplace.errors import AlreadyCompletedError, ConflictError, NotFoundError, ValidationError
from rental_marketplace.models.rental_models import Reservation, Variant
from rental_marketplace.models.statuses import BLOCKING_RESERVATION_STATES, ReservationStatus
from rental_marketplace.services.pricing_service import parse_timestamp, to_quantity, utcnow

RESERVATION_LOGGER = logging.getLogger("rental_marketplace.reservations")


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def overlapping_demand(
    db: Session,
    variant_id: int,
    start_date: datetime,
    end_date: datetime,
    exclude_order_id: int | None = None,
) -> int:
    stmt = (
        select(func.coalesce(func.sum(Reservation.Quantity), 0))
        .where(Reservation.VariantID == variant_id)
        .where(Reservation.Status.in_(BLOCKING_RESERVATION_STATES))
        .where(Reservation.StartDate < end_date)
        .where(Reservation.EndDate > start_date)
    )
    if exclude_order_id is not None:
        stmt = stmt.where(Reservation.OrderID != exclude_order_id)
    return int(db.execute(stmt).scalar_one() or 0)


def normalize_items(items: Iterable[Any]) -> list[dict]:
    normalized = []
    for index, item in enumerate(items):
        data = item if isinstance(item, dict) else item.model_dump()
        try:
            variant_id = int(data["variant_id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError("Each item needs a variant_id and an integer quantity", item_index=index) from exc
        quantity = to_quantity(data.get("quantity"), item_index=index)

        start_date = parse_timestamp(data.get("start_date"), "start_date")
        end_date = parse_timestamp(data.get("end_date"), "end_date")
        if end_date <= start_date:
            raise ValidationError(
                "End date must be after start date",
                item_index=index,
                variant_id=variant_id,
            )
        normalized.append(
            {
                **data,
                "index": index,
                "variant_id": variant_id,
                "quantity": quantity,
                "start_date": start_date,
                "end_date": end_date,
            }
        )
    return normalized


def lock_variants(db: Session, variant_ids: Iterable[int]) -> dict[int, Variant]:
    # Ascending id order keeps two multi-variant orders from deadlocking.
    ordered_ids = sorted(set(variant_ids))
    if not ordered_ids:
        return {}
    rows = db.execute(
        select(Variant)
        .where(Variant.VariantID.in_(ordered_ids))
        .order_by(Variant.VariantID)
        .with_for_update()
    ).scalars().all()
    return {variant.VariantID: variant for variant in rows}


def reserve(db: Session, order_id: int, items: Iterable[Any]) -> list[Reservation]:
    """Allocate every item for ``order_id`` or raise without allocating any.

    Items carry ``variant_id``, ``quantity``, ``start_date`` and ``end_date``
    and may carry pricing snapshot keys (``unit``, ``periods``,
    ``price_per_unit``, ``line_total``). The batch runs in a savepoint, so a
    failure removes this call's rows even if the caller goes on to commit.
    """
    normalized = normalize_items(items)
    if not normalized:
        raise ValidationError("At least one item is required to reserve stock", order_id=order_id)

    with db.begin_nested():
        created = _reserve_batch(db, order_id, normalized)

    RESERVATION_LOGGER.info("Reserved order_id=%s lines=%s", order_id, len(created))
    return created


def _reserve_batch(db: Session, order_id: int, normalized: list[dict]) -> list[Reservation]:
    variants = lock_variants(db, [item["variant_id"] for item in normalized])
    created: list[Reservation] = []
    for item in normalized:
        variant = variants.get(item["variant_id"])
        if variant is None:
            raise NotFoundError(f"Variant {item['variant_id']} not found", variant_id=item["variant_id"])

        existing = overlapping_demand(db, variant.VariantID, item["start_date"], item["end_date"])
        stock = int(variant.StockQuantity or 0)
        if existing + item["quantity"] > stock:
            RESERVATION_LOGGER.warning(
                "Reservation conflict order_id=%s variant_id=%s requested=%s existing=%s stock=%s",
                order_id,
                variant.VariantID,
                item["quantity"],
                existing,
                stock,
            )
            raise ConflictError(
                f"Insufficient stock for variant {variant.VariantID}: requested {item['quantity']}, "
                f"available {max(0, stock - existing)} between {item['start_date'].isoformat()} "
                f"and {item['end_date'].isoformat()}",
                order_id=order_id,
                item_index=item["index"],
                variant_id=variant.VariantID,
                requested=item["quantity"],
                existing_demand=existing,
                stock_quantity=stock,
            )

        reservation = Reservation(
            OrderID=order_id,
            VariantID=variant.VariantID,
            StartDate=item["start_date"],
            EndDate=item["end_date"],
            Quantity=item["quantity"],
            Status=ReservationStatus.RESERVED,
            Unit=item.get("unit"),
            Periods=item.get("periods"),
            PricePerUnit=item.get("price_per_unit"),
            LineTotal=item.get("line_total"),
        )
        db.add(reservation)
        # Flush so later items in the same batch see this row in their demand.
        db.flush()
        created.append(reservation)
    return created


def _transition_reservations(
    db: Session,
    order_id: int,
    from_states: Iterable[ReservationStatus],
    target: ReservationStatus,
    reservation_ids: Iterable[int] | None = None,
) -> list[Reservation]:
    stmt = (
        select(Reservation)
        .where(Reservation.OrderID == order_id)
        .where(Reservation.Status.in_(list(from_states)))
        .order_by(Reservation.ReservationID)
        .with_for_update()
    )
    if reservation_ids is not None:
        stmt = stmt.where(Reservation.ReservationID.in_(list(reservation_ids)))
    rows = db.execute(stmt).scalars().all()
    now = utcnow()
    for reservation in rows:
        reservation.Status = target
        reservation.UpdatedAt = now
    db.flush()
    return rows


def release(db: Session, order_id: int) -> int:
    released = len(_transition_reservations(db, order_id, BLOCKING_RESERVATION_STATES, ReservationStatus.CANCELLED))
    if released:
        RESERVATION_LOGGER.info("Released order_id=%s reservations=%s", order_id, released)
    return released


def activate_for_order(db: Session, order_id: int, reservation_ids: Iterable[int] | None = None) -> int:
    return len(
        _transition_reservations(
            db,
            order_id,
            (ReservationStatus.RESERVED,),
            ReservationStatus.ACTIVE,
            reservation_ids=reservation_ids,
        )
    )


def get_reservation(db: Session, reservation_id: int, *, for_update: bool = False) -> Reservation:
    stmt = select(Reservation).where(Reservation.ReservationID == reservation_id)
    if for_update:
        stmt = stmt.with_for_update()
    reservation = db.execute(stmt).scalars().first()
    if not reservation:
        raise NotFoundError("Reservation not found", reservation_id=reservation_id)
    return reservation


def complete(db: Session, reservation_id: int) -> Reservation:
    reservation = get_reservation(db, reservation_id, for_update=True)
    if reservation.Status == ReservationStatus.COMPLETED:
        raise AlreadyCompletedError(
            "This reservation has already been returned",
            reservation_id=reservation_id,
            order_id=reservation.OrderID,
            current_status=reservation.Status.value,
        )
    reservation.Status = ReservationStatus.COMPLETED
    reservation.UpdatedAt = utcnow()
    db.flush()
    return reservation


def list_for_order(db: Session, order_id: int) -> list[Reservation]:
    return db.execute(
        select(Reservation).where(Reservation.OrderID == order_id).order_by(Reservation.ReservationID)
    ).scalars().all()


def check_availability(db: Session, variant_id: int, start: Any, end: Any) -> dict:
    """Read-only availability for a window; takes no locks."""
    start_date = parse_timestamp(start, "start_date")
    end_date = parse_timestamp(end, "end_date")
    if end_date <= start_date:
        raise ValidationError("End date must be after start date", variant_id=variant_id)

    variant = db.get(Variant, variant_id)
    if not variant:
        raise NotFoundError(f"Variant {variant_id} not found", variant_id=variant_id)

    reserved = overlapping_demand(db, variant_id, start_date, end_date)
    stock = int(variant.StockQuantity or 0)
    return {
        "variant_id": variant_id,
        "start_date": start_date,
        "end_date": end_date,
        "stock_quantity": stock,
        "reserved_quantity": reserved,
        "available_quantity": max(0, stock - reserved),
    }


def serialize_reservation(reservation: Reservation) -> dict:
    return {
        "id": reservation.ReservationID,
        "order_id": reservation.OrderID,
        "variant_id": reservation.VariantID,
        "start_date": reservation.StartDate,
        "end_date": reservation.EndDate,
        "quantity": reservation.Quantity,
        "status": reservation.Status.value if reservation.Status else None,
        "unit": reservation.Unit.value if reservation.Unit else None,
        "periods": reservation.Periods,
        "price_per_unit": reservation.PricePerUnit,
        "line_total": reservation.LineTotal,
    }
