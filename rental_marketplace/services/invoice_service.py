from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_marketplace.errors import NotFoundError, ValidationError
from rental_marketplace.models.rental_models import Invoice, Order, Payment
from rental_marketplace.models.statuses import InvoiceStatus
from rental_marketplace.services.pricing_service import DEFAULT_GST_RATE, calculate_gst, to_money, utcnow

INVOICE_LOGGER = logging.getLogger("rental_marketplace.invoices")


def generate_invoice_number(db: Session, issued_on: date | None = None) -> str:
    current = issued_on or utcnow().date()
    prefix = f"INV-{current.year}{current.month:02d}-"

    rows = db.execute(select(Invoice.InvoiceNumber).where(Invoice.InvoiceNumber.like(f"{prefix}%"))).all()
    max_suffix = 0
    for row in rows:
        number = (row[0] or "").strip()
        suffix = number.replace(prefix, "", 1)
        if not suffix.isdigit():
            continue
        max_suffix = max(max_suffix, int(suffix))
    return f"{prefix}{max_suffix + 1:04d}"


def _line_items_for_order(order: Order) -> list[dict]:
    items = []
    for reservation in order.Reservations:
        variant = reservation.Variant
        product = variant.Product if variant is not None else None
        description = product.Name if product is not None else f"Product - Variant {reservation.VariantID}"
        line_total = to_money(reservation.LineTotal or 0)
        quantity = int(reservation.Quantity or 0)
        items.append(
            {
                "reservation_id": reservation.ReservationID,
                "description": description,
                "quantity": quantity,
                "unit_price": str(to_money(line_total / quantity)) if quantity else "0.00",
                "duration": reservation.Periods,
                "unit": reservation.Unit.value if reservation.Unit else None,
                "total": str(line_total),
            }
        )
    return items


def get_invoice_for_order(db: Session, order_id: int) -> Invoice | None:
    return db.execute(select(Invoice).where(Invoice.OrderID == order_id)).scalars().first()


def get_invoice(db: Session, invoice_id: int, *, for_update: bool = False) -> Invoice:
    stmt = select(Invoice).where(Invoice.InvoiceID == invoice_id)
    if for_update:
        stmt = stmt.with_for_update()
    invoice = db.execute(stmt).scalars().first()
    if not invoice:
        raise NotFoundError("Invoice not found", invoice_id=invoice_id)
    return invoice


def generate_invoice(
    db: Session,
    order: Order,
    *,
    due_days: int = 7,
    gst_rate: Decimal = DEFAULT_GST_RATE,
) -> Invoice:
    """Create the invoice for ``order``, or return the one it already has."""
    existing = get_invoice_for_order(db, order.OrderID)
    if existing:
        return existing

    subtotal = to_money(order.Subtotal or 0)
    gst = calculate_gst(subtotal, order.VendorJurisdiction, order.CustomerJurisdiction, gst_rate)
    total = to_money(order.TotalAmount or 0)
    invoice = Invoice(
        Order=order,
        InvoiceNumber=generate_invoice_number(db),
        Status=InvoiceStatus.UNPAID,
        LineItems=_line_items_for_order(order),
        Subtotal=subtotal,
        Cgst=gst["cgst"],
        Sgst=gst["sgst"],
        Igst=gst["igst"],
        TotalTax=gst["total"],
        TotalAmount=total,
        AmountPaid=Decimal("0.00"),
        AmountDue=total,
        DueDate=utcnow().date() + timedelta(days=due_days),
    )
    db.add(invoice)
    db.flush()
    INVOICE_LOGGER.info("Invoice generated invoice=%s order_id=%s total=%s", invoice.InvoiceNumber, order.OrderID, total)
    return invoice


def _refresh_status(invoice: Invoice) -> None:
    paid = to_money(invoice.AmountPaid or 0)
    due = to_money(invoice.TotalAmount or 0) - paid
    invoice.AmountDue = max(Decimal("0.00"), due)
    if due <= 0:
        invoice.Status = InvoiceStatus.PAID
    elif paid > 0:
        invoice.Status = InvoiceStatus.PARTIALLY_PAID
    else:
        invoice.Status = InvoiceStatus.UNPAID
    invoice.UpdatedAt = utcnow()


def record_payment(
    db: Session,
    invoice_id: int,
    amount,
    method: str | None,
    transaction_id: str | None,
) -> Invoice:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive", invoice_id=invoice_id, amount=str(amount))

    invoice = get_invoice(db, invoice_id, for_update=True)
    db.add(
        Payment(
            InvoiceID=invoice.InvoiceID,
            OrderID=invoice.OrderID,
            Amount=amount,
            PaymentMethod=method or "Manual",
            TransactionID=transaction_id,
            Status="SUCCESS",
            PaidAt=utcnow(),
        )
    )
    invoice.AmountPaid = to_money(invoice.AmountPaid or 0) + amount
    _refresh_status(invoice)
    db.flush()
    INVOICE_LOGGER.info(
        "Payment recorded invoice=%s amount=%s status=%s",
        invoice.InvoiceNumber,
        amount,
        invoice.Status.value,
    )
    return invoice


def append_late_fee(db: Session, invoice_id: int, amount, description: str | None = None) -> Invoice:
    fee = to_money(amount)
    if fee <= 0:
        raise ValidationError("Late fee must be positive", invoice_id=invoice_id, amount=str(fee))

    invoice = get_invoice(db, invoice_id, for_update=True)
    # Reassign so the JSON column registers the change.
    line_items = list(invoice.LineItems or [])
    line_items.append(
        {
            "description": description or "Late Return Fee",
            "quantity": 1,
            "unit_price": str(fee),
            "total": str(fee),
        }
    )
    invoice.LineItems = line_items
    invoice.TotalAmount = to_money(invoice.TotalAmount or 0) + fee
    _refresh_status(invoice)
    db.flush()
    INVOICE_LOGGER.info("Late fee appended invoice=%s fee=%s due=%s", invoice.InvoiceNumber, fee, invoice.AmountDue)
    return invoice


def serialize_invoice(invoice: Invoice) -> dict:
    return {
        "id": invoice.InvoiceID,
        "order_id": invoice.OrderID,
        "invoice_number": invoice.InvoiceNumber,
        "status": invoice.Status.value if invoice.Status else None,
        "line_items": list(invoice.LineItems or []),
        "subtotal": invoice.Subtotal,
        "cgst": invoice.Cgst,
        "sgst": invoice.Sgst,
        "igst": invoice.Igst,
        "total_tax": invoice.TotalTax,
        "total_amount": invoice.TotalAmount,
        "amount_paid": invoice.AmountPaid,
        "amount_due": invoice.AmountDue,
        "due_date": invoice.DueDate,
    }
