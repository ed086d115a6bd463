"""Order creation and the vendor/customer driven status changes.

Each public function here is one unit of work: it commits on success and
rolls back on any exception. Notifications go out after the commit.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PayloadValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from rental_marketplace.config import Settings
from rental_marketplace.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from rental_marketplace.models.rental_models import Order, Reservation, Variant
from rental_marketplace.models.statuses import ActorRole, OrderStatus
from rental_marketplace.schemas.orders import CreateOrderDto, OrderDetailsUpdate
from rental_marketplace.services import invoice_service, notification_service, reservation_service
from rental_marketplace.services.access_service import (
    Actor,
    require_customer_or_admin,
    require_participant,
    require_vendor_or_admin,
)
from rental_marketplace.services.order_state import OrderEvent, apply_event, ensure_can_apply
from rental_marketplace.services.pricing_service import (
    DEFAULT_GST_RATE,
    calculate_duration,
    generate_quotation,
    to_money,
    utcnow,
)

ORDER_LOGGER = logging.getLogger("rental_marketplace.orders")

ORDER_NUMBER_ATTEMPTS = 10
EDITABLE_STATES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
DETAIL_FIELDS = {
    "billing_address": "BillingAddress",
    "shipping_address": "ShippingAddress",
    "customer_notes": "CustomerNotes",
}


def _gst_rate(settings: Settings | None) -> Decimal:
    return settings.gst_rate if settings is not None else DEFAULT_GST_RATE


def generate_order_number(db: Session, created_on: date | None = None) -> str:
    current = created_on or utcnow().date()
    prefix = f"ORD-{current:%Y%m%d}-"
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = f"{prefix}{secrets.randbelow(10000):04d}"
        taken = db.execute(select(Order.OrderID).where(Order.OrderNumber == candidate)).first()
        if not taken:
            return candidate
    raise ConflictError("Could not allocate a unique order number", prefix=prefix)


def get_order(db: Session, order_id: int, *, for_update: bool = False) -> Order:
    stmt = (
        select(Order)
        .options(selectinload(Order.Reservations), selectinload(Order.Invoice))
        .where(Order.OrderID == order_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    order = db.execute(stmt).scalars().first()
    if not order:
        raise NotFoundError("Order not found", order_id=order_id)
    return order


def _coerce_payload(payload: Any) -> CreateOrderDto:
    if isinstance(payload, CreateOrderDto):
        return payload
    try:
        return CreateOrderDto.model_validate(payload)
    except PayloadValidationError as exc:
        raise ValidationError("Invalid order payload", errors=exc.errors(include_url=False)) from exc


def _load_variants(db: Session, variant_ids: list[int]) -> dict[int, Variant]:
    rows = db.execute(
        select(Variant)
        .options(selectinload(Variant.Product))
        .where(Variant.VariantID.in_(set(variant_ids)))
    ).scalars().all()
    variants = {variant.VariantID: variant for variant in rows}
    for variant_id in variant_ids:
        if variant_id not in variants:
            raise NotFoundError(f"Variant {variant_id} not found", variant_id=variant_id)
    return variants


def _resolve_vendor(variants: dict[int, Variant], requested_vendor_id: int | None) -> int:
    vendor_ids = {variant.Product.VendorID for variant in variants.values()}
    if len(vendor_ids) != 1:
        raise ValidationError(
            "All items in an order must belong to the same vendor",
            vendor_ids=sorted(vendor_ids),
        )
    vendor_id = vendor_ids.pop()
    if requested_vendor_id is not None and requested_vendor_id != vendor_id:
        raise ValidationError(
            "Items do not belong to the requested vendor",
            vendor_id=requested_vendor_id,
            item_vendor_id=vendor_id,
        )
    return vendor_id


def _check_duration_limits(items: list[dict], settings: Settings | None) -> None:
    if settings is None:
        return
    for index, item in enumerate(items):
        days = calculate_duration(item["start_date"], item["end_date"])["days"]
        if settings.min_rental_days is not None and days < settings.min_rental_days:
            raise ValidationError(
                f"Minimum rental period is {settings.min_rental_days} day(s)",
                item_index=index,
                min_rental_days=settings.min_rental_days,
            )
        if settings.max_rental_days is not None and days > settings.max_rental_days:
            raise ValidationError(
                f"Maximum rental period is {settings.max_rental_days} day(s)",
                item_index=index,
                max_rental_days=settings.max_rental_days,
            )


def create_order(db: Session, customer_id: int, payload: Any, settings: Settings | None = None) -> Order:
    """Price, persist and reserve a new PENDING order in one transaction."""
    dto = _coerce_payload(payload)
    if not dto.items:
        raise ValidationError("Order must contain at least one item", customer_id=customer_id)

    items = [item.model_dump() for item in dto.items]
    try:
        variants = _load_variants(db, [item["variant_id"] for item in items])
        vendor_id = _resolve_vendor(variants, dto.vendor_id)
        _check_duration_limits(items, settings)

        quotation = generate_quotation(
            [
                {
                    "variant": variants[item["variant_id"]],
                    "start_date": item["start_date"],
                    "end_date": item["end_date"],
                    "quantity": item["quantity"],
                }
                for item in items
            ],
            dto.vendor_jurisdiction,
            dto.customer_jurisdiction,
            _gst_rate(settings),
        )
        lines = quotation["line_items"]

        order = Order(
            OrderNumber=generate_order_number(db),
            CustomerID=customer_id,
            VendorID=vendor_id,
            Subtotal=quotation["subtotal"],
            TaxAmount=quotation["tax_breakdown"]["total_tax"],
            TotalAmount=quotation["total_amount"],
            LateFeeAmount=Decimal("0.00"),
            StartDate=min(line["start_date"] for line in lines),
            EndDate=max(line["end_date"] for line in lines),
            Status=OrderStatus.PENDING,
            VendorJurisdiction=dto.vendor_jurisdiction,
            CustomerJurisdiction=dto.customer_jurisdiction,
            BillingAddress=dto.billing_address,
            ShippingAddress=dto.shipping_address,
            CustomerNotes=dto.customer_notes,
        )
        db.add(order)
        db.flush()

        reservation_service.reserve(
            db,
            order.OrderID,
            [
                {
                    "variant_id": line["variant_id"],
                    "quantity": line["quantity"],
                    "start_date": line["start_date"],
                    "end_date": line["end_date"],
                    "unit": line["unit"],
                    "periods": line["periods"],
                    "price_per_unit": line["price_per_unit"],
                    "line_total": line["line_total"],
                }
                for line in lines
            ],
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    ORDER_LOGGER.info(
        "Order created order=%s customer_id=%s vendor_id=%s total=%s",
        order.OrderNumber,
        customer_id,
        vendor_id,
        order.TotalAmount,
    )
    notification_service.notify(
        db,
        vendor_id,
        "INFO",
        "New Order Received",
        f"New order {order.OrderNumber} is waiting for confirmation",
        f"/orders/{order.OrderID}",
    )
    return get_order(db, order.OrderID)


def confirm_order(db: Session, order_id: int, actor: Actor, settings: Settings | None = None) -> Order:
    try:
        order = get_order(db, order_id, for_update=True)
        require_vendor_or_admin(order, actor, "confirm")
        apply_event(order, OrderEvent.CONFIRM)
        try:
            invoice_service.generate_invoice(
                db,
                order,
                due_days=settings.invoice_due_days if settings is not None else 7,
                gst_rate=_gst_rate(settings),
            )
        except SQLAlchemyError as exc:
            raise UpstreamError("Invoice could not be generated", order_id=order_id) from exc
        db.commit()
    except Exception:
        db.rollback()
        raise

    ORDER_LOGGER.info("Order confirmed order=%s by user_id=%s", order.OrderNumber, actor.user_id)
    notification_service.notify(
        db,
        order.CustomerID,
        "SUCCESS",
        "Order Confirmed",
        f"Your order {order.OrderNumber} has been confirmed",
        f"/orders/{order.OrderID}",
    )
    return get_order(db, order_id)


def cancel_order(db: Session, order_id: int, actor: Actor) -> Order:
    try:
        order = get_order(db, order_id, for_update=True)
        require_participant(order, actor, "cancel")
        apply_event(order, OrderEvent.CANCEL)
        released = reservation_service.release(db, order_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    ORDER_LOGGER.info(
        "Order cancelled order=%s by user_id=%s released=%s",
        order.OrderNumber,
        actor.user_id,
        released,
    )
    recipient = order.VendorID if actor.user_id == order.CustomerID else order.CustomerID
    notification_service.notify(
        db,
        recipient,
        "WARNING",
        "Order Cancelled",
        f"Order {order.OrderNumber} has been cancelled",
        f"/orders/{order.OrderID}",
    )
    return get_order(db, order_id)


def update_order_details(db: Session, order_id: int, actor: Actor, changes: Any) -> Order:
    if not isinstance(changes, OrderDetailsUpdate):
        try:
            changes = OrderDetailsUpdate.model_validate(changes or {})
        except PayloadValidationError as exc:
            raise ValidationError("Invalid order update", errors=exc.errors(include_url=False)) from exc

    try:
        order = get_order(db, order_id, for_update=True)
        require_customer_or_admin(order, actor, "update")
        if order.Status not in EDITABLE_STATES:
            raise ValidationError(
                f"Cannot update order with status: {order.Status.value}",
                order_id=order_id,
                current_status=order.Status.value,
            )
        applied = []
        for field, value in changes.model_dump(exclude_unset=True).items():
            attribute = DETAIL_FIELDS.get(field)
            if attribute is None:
                continue
            setattr(order, attribute, value)
            applied.append(field)
        if applied:
            order.UpdatedAt = utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise

    if applied:
        ORDER_LOGGER.info("Order details updated order=%s fields=%s", order.OrderNumber, ",".join(applied))
    return order


def complete_order(db: Session, order_id: int, actor: Actor) -> Order:
    try:
        order = get_order(db, order_id, for_update=True)
        require_vendor_or_admin(order, actor, "complete")
        ensure_can_apply(order, OrderEvent.COMPLETE)
        invoice = invoice_service.get_invoice_for_order(db, order_id)
        if invoice is None or to_money(invoice.AmountDue or 0) > 0:
            raise ConflictError(
                "Order cannot be completed while the invoice has an outstanding balance",
                order_id=order_id,
                amount_due=str(invoice.AmountDue) if invoice is not None else None,
            )
        apply_event(order, OrderEvent.COMPLETE)
        db.commit()
    except Exception:
        db.rollback()
        raise

    ORDER_LOGGER.info("Order completed order=%s by user_id=%s", order.OrderNumber, actor.user_id)
    notification_service.notify(
        db,
        order.CustomerID,
        "SUCCESS",
        "Order Completed",
        f"Order {order.OrderNumber} is complete. Thank you for renting with us.",
        f"/orders/{order.OrderID}",
    )
    return order


def list_orders(db: Session, actor: Actor, status: str | None = None) -> list[Order]:
    stmt = select(Order).options(selectinload(Order.Reservations))
    if not actor.is_admin:
        column = Order.VendorID if actor.role == ActorRole.VENDOR else Order.CustomerID
        stmt = stmt.where(column == actor.user_id)
    if status:
        try:
            stmt = stmt.where(Order.Status == OrderStatus(status.strip().upper()))
        except ValueError as exc:
            raise ValidationError(f"Unknown order status: {status}", status=status) from exc
    return db.execute(stmt.order_by(Order.OrderID.desc())).scalars().all()


def serialize_order(order: Order) -> dict:
    invoice = order.Invoice
    return {
        "id": order.OrderID,
        "order_number": order.OrderNumber,
        "customer_id": order.CustomerID,
        "vendor_id": order.VendorID,
        "status": order.Status.value if order.Status else None,
        "start_date": order.StartDate,
        "end_date": order.EndDate,
        "subtotal": order.Subtotal,
        "tax_amount": order.TaxAmount,
        "late_fee_amount": order.LateFeeAmount,
        "total_amount": order.TotalAmount,
        "vendor_jurisdiction": order.VendorJurisdiction,
        "customer_jurisdiction": order.CustomerJurisdiction,
        "billing_address": order.BillingAddress,
        "shipping_address": order.ShippingAddress,
        "customer_notes": order.CustomerNotes,
        "created_at": order.CreatedAt,
        "updated_at": order.UpdatedAt,
        "reservations": [
            reservation_service.serialize_reservation(reservation)
            for reservation in order.Reservations
        ],
        "invoice": {
            "id": invoice.InvoiceID,
            "invoice_number": invoice.InvoiceNumber,
            "status": invoice.Status.value if invoice.Status else None,
            "amount_due": invoice.AmountDue,
        } if invoice else None,
    }


def reservations_by_id(order: Order) -> dict[int, Reservation]:
    return {reservation.ReservationID: reservation for reservation in order.Reservations}
