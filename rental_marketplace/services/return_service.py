from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PayloadValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rental_marketplace.config import Settings
from rental_marketplace.errors import ValidationError
from rental_marketplace.models.rental_models import Order, Pickup, RentalReturn
from rental_marketplace.models.statuses import OrderStatus, ReservationStatus, SETTLED_RESERVATION_STATES
from rental_marketplace.schemas.handover import ReturnRequest
from rental_marketplace.services import invoice_service, notification_service, reservation_service
from rental_marketplace.services.access_service import Actor, build_actor, require_vendor_or_admin
from rental_marketplace.services.order_service import get_order
from rental_marketplace.services.order_state import OrderEvent, apply_event, ensure_can_apply
from rental_marketplace.services.pricing_service import parse_timestamp, to_money, utcnow

RETURN_LOGGER = logging.getLogger("rental_marketplace.returns")

DEFAULT_LATE_FEE_RATE = Decimal("0.20")
SECONDS_PER_DAY = 24 * 60 * 60


def calculate_late_fee(end_date: Any, returned_at: Any, base_price: Any, rate: Any = DEFAULT_LATE_FEE_RATE) -> dict:
    """Late fee is ``base_price * rate`` for every started day past ``end_date``."""
    end_at = parse_timestamp(end_date, "end_date")
    returned = parse_timestamp(returned_at, "returned_at")
    if returned <= end_at:
        return {"is_late": False, "days_late": 0, "late_fee": Decimal("0.00")}

    days_late = math.ceil((returned - end_at).total_seconds() / SECONDS_PER_DAY)
    fee = to_money(Decimal(str(base_price)) * Decimal(str(rate)) * days_late)
    return {"is_late": True, "days_late": days_late, "late_fee": fee}


def _coerce_payload(payload: Any) -> ReturnRequest:
    if isinstance(payload, ReturnRequest):
        return payload
    try:
        return ReturnRequest.model_validate(payload)
    except PayloadValidationError as exc:
        raise ValidationError("Invalid return payload", errors=exc.errors(include_url=False)) from exc


def _resolve_pickup(db: Session, reservation_id: int, pickup_id: int | None) -> Pickup | None:
    if pickup_id is None:
        return db.execute(select(Pickup).where(Pickup.ReservationID == reservation_id)).scalars().first()
    pickup = db.get(Pickup, pickup_id)
    if not pickup or pickup.ReservationID != reservation_id:
        raise ValidationError(
            "Pickup does not match this reservation",
            pickup_id=pickup_id,
            reservation_id=reservation_id,
        )
    return pickup


def record_return(
    db: Session,
    vendor_id: int,
    role: Any,
    payload: Any,
    settings: Settings | None = None,
    returned_at: datetime | None = None,
) -> dict:
    """Take one reservation back, charge any late fee and close out the order
    once nothing is left outstanding.

    The late fee base is the order's rental total, excluding fees already
    charged, so repeated late returns on one order do not compound.
    """
    request = _coerce_payload(payload)
    actor = build_actor(vendor_id, role)
    rate = settings.late_fee_rate if settings is not None else DEFAULT_LATE_FEE_RATE
    returned = parse_timestamp(returned_at or request.returned_at or utcnow(), "returned_at")

    try:
        order = get_order(db, request.order_id, for_update=True)
        require_vendor_or_admin(order, actor, "record a return for")
        ensure_can_apply(order, OrderEvent.RETURN)

        reservation = reservation_service.get_reservation(db, request.reservation_id, for_update=True)
        if reservation.OrderID != order.OrderID:
            raise ValidationError(
                "Reservation does not belong to this order",
                order_id=order.OrderID,
                reservation_id=reservation.ReservationID,
            )
        if reservation.Status == ReservationStatus.CANCELLED:
            raise ValidationError(
                "Cannot return a cancelled reservation",
                reservation_id=reservation.ReservationID,
                current_status=reservation.Status.value,
            )
        pickup = _resolve_pickup(db, reservation.ReservationID, request.pickup_id)
        reservation_service.complete(db, reservation.ReservationID)

        base_price = to_money(order.TotalAmount or 0) - to_money(order.LateFeeAmount or 0)
        late_info = calculate_late_fee(reservation.EndDate, returned, base_price, rate)

        rental_return = RentalReturn(
            OrderID=order.OrderID,
            ReservationID=reservation.ReservationID,
            PickupID=pickup.PickupID if pickup else None,
            ReturnedAt=returned,
            IsLate=late_info["is_late"],
            LateFee=late_info["late_fee"],
            ConditionNotes=request.condition_notes,
        )
        db.add(rental_return)

        if late_info["late_fee"] > 0:
            fee = late_info["late_fee"]
            order.LateFeeAmount = to_money(order.LateFeeAmount or 0) + fee
            order.TotalAmount = to_money(order.TotalAmount or 0) + fee
            order.UpdatedAt = utcnow()
            invoice = invoice_service.get_invoice_for_order(db, order.OrderID)
            if invoice is not None:
                invoice_service.append_late_fee(
                    db,
                    invoice.InvoiceID,
                    fee,
                    f"Late Return Fee ({late_info['days_late']} day(s))",
                )
            else:
                RETURN_LOGGER.warning("Late fee not invoiced, order=%s has no invoice", order.OrderNumber)

        if all(r.Status in SETTLED_RESERVATION_STATES for r in order.Reservations):
            apply_event(order, OrderEvent.RETURN)
        db.flush()
        db.commit()
    except Exception:
        db.rollback()
        raise

    RETURN_LOGGER.info(
        "Return recorded order=%s reservation_id=%s late=%s fee=%s status=%s",
        order.OrderNumber,
        rental_return.ReservationID,
        late_info["is_late"],
        late_info["late_fee"],
        order.Status.value,
    )
    if late_info["is_late"]:
        message = (
            f"Items from order {order.OrderNumber} were returned {late_info['days_late']} day(s) late. "
            f"A late fee of {late_info['late_fee']} has been added to your invoice."
        )
        kind = "WARNING"
    else:
        message = f"Items from order {order.OrderNumber} have been returned. Thank you!"
        kind = "SUCCESS"
    notification_service.notify(db, order.CustomerID, kind, "Items Returned", message, f"/orders/{order.OrderID}")
    return {"return": rental_return, "order": order, "late_info": late_info}


def list_pending_returns(db: Session, actor: Actor, now: datetime | None = None) -> list[dict]:
    current = parse_timestamp(now or utcnow(), "now")
    stmt = (
        select(Order)
        .options(selectinload(Order.Reservations))
        .where(Order.Status == OrderStatus.PICKED_UP)
    )
    if not actor.is_admin:
        stmt = stmt.where(Order.VendorID == actor.user_id)
    orders = db.execute(stmt.order_by(Order.EndDate.asc(), Order.OrderID.asc())).scalars().all()
    return [
        {
            "order": order,
            "is_overdue": order.EndDate < current,
            "outstanding_reservation_ids": [
                r.ReservationID for r in order.Reservations if r.Status not in SETTLED_RESERVATION_STATES
            ],
        }
        for order in orders
    ]


def serialize_return(rental_return: RentalReturn) -> dict:
    return {
        "id": rental_return.ReturnID,
        "order_id": rental_return.OrderID,
        "reservation_id": rental_return.ReservationID,
        "pickup_id": rental_return.PickupID,
        "returned_at": rental_return.ReturnedAt,
        "is_late": bool(rental_return.IsLate),
        "late_fee": rental_return.LateFee,
        "condition_notes": rental_return.ConditionNotes,
    }
