from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PayloadValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rental_marketplace.errors import ConflictError, ValidationError
from rental_marketplace.models.rental_models import Order, Pickup
from rental_marketplace.models.statuses import OrderStatus, ReservationStatus
from rental_marketplace.schemas.handover import PickupRequest
from rental_marketplace.services import notification_service, reservation_service
from rental_marketplace.services.access_service import Actor, build_actor, require_vendor_or_admin
from rental_marketplace.services.order_service import get_order, reservations_by_id
from rental_marketplace.services.order_state import OrderEvent, apply_event, ensure_can_apply
from rental_marketplace.services.pricing_service import utcnow

PICKUP_LOGGER = logging.getLogger("rental_marketplace.pickups")


def _coerce_payload(payload: Any) -> PickupRequest:
    if isinstance(payload, PickupRequest):
        return payload
    try:
        return PickupRequest.model_validate(payload)
    except PayloadValidationError as exc:
        raise ValidationError("Invalid pickup payload", errors=exc.errors(include_url=False)) from exc


def record_pickup(db: Session, vendor_id: int, role: Any, payload: Any) -> dict:
    """Hand the order's items to the customer.

    With no ``reservation_ids`` every open reservation on the order is picked
    up. Pickup rows, reservation activation and the PICKED_UP status land in
    one transaction.
    """
    request = _coerce_payload(payload)
    actor = build_actor(vendor_id, role)
    try:
        order = get_order(db, request.order_id, for_update=True)
        require_vendor_or_admin(order, actor, "record pickup for")
        ensure_can_apply(order, OrderEvent.PICKUP)

        by_id = reservations_by_id(order)
        if request.reservation_ids:
            unknown = [rid for rid in request.reservation_ids if rid not in by_id]
            if unknown:
                raise ValidationError(
                    "Reservations do not belong to this order",
                    order_id=order.OrderID,
                    reservation_ids=unknown,
                )
            targets = [by_id[rid] for rid in dict.fromkeys(request.reservation_ids)]
        else:
            targets = [r for r in by_id.values() if r.Status != ReservationStatus.CANCELLED]
        if not targets:
            raise ValidationError("Order has no reservations to pick up", order_id=order.OrderID)

        target_ids = [reservation.ReservationID for reservation in targets]
        duplicates = db.execute(
            select(Pickup.ReservationID).where(Pickup.ReservationID.in_(target_ids))
        ).scalars().all()
        if duplicates:
            raise ConflictError(
                "Pickup already recorded for this order",
                order_id=order.OrderID,
                reservation_ids=sorted(duplicates),
            )

        picked_up_at = utcnow()
        pickups = []
        for reservation in targets:
            pickup = Pickup(
                OrderID=order.OrderID,
                ReservationID=reservation.ReservationID,
                PickedUpBy=request.picked_up_by,
                Notes=request.notes,
                PickedUpAt=picked_up_at,
            )
            db.add(pickup)
            pickups.append(pickup)

        reservation_service.activate_for_order(db, order.OrderID, target_ids)
        apply_event(order, OrderEvent.PICKUP)
        db.commit()
    except Exception:
        db.rollback()
        raise

    PICKUP_LOGGER.info(
        "Pickup recorded order=%s reservations=%s by user_id=%s",
        order.OrderNumber,
        len(pickups),
        actor.user_id,
    )
    notification_service.notify(
        db,
        order.CustomerID,
        "INFO",
        "Items Picked Up",
        f"Items from order {order.OrderNumber} have been picked up. "
        f"Please return them by {order.EndDate:%Y-%m-%d %H:%M} UTC.",
        f"/orders/{order.OrderID}",
    )
    return {"order": order, "pickups": pickups}


def list_pending_pickups(db: Session, actor: Actor) -> list[Order]:
    stmt = (
        select(Order)
        .options(selectinload(Order.Reservations))
        .where(Order.Status == OrderStatus.CONFIRMED)
    )
    if not actor.is_admin:
        stmt = stmt.where(Order.VendorID == actor.user_id)
    return db.execute(stmt.order_by(Order.StartDate.asc(), Order.OrderID.asc())).scalars().all()


def serialize_pickup(pickup: Pickup) -> dict:
    return {
        "id": pickup.PickupID,
        "order_id": pickup.OrderID,
        "reservation_id": pickup.ReservationID,
        "picked_up_by": pickup.PickedUpBy,
        "notes": pickup.Notes,
        "picked_up_at": pickup.PickedUpAt,
    }
