"""Rental pricing: duration math, billing tier selection, GST split and quotations.

Pure computation, no database access. Money is handled as ``Decimal`` and
rounded half-up to two places at every output boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

from rental_marketplace.errors import InvalidIntervalError, PricingUnavailableError, ValidationError
from rental_marketplace.models.statuses import PricingUnit

CENT = Decimal("0.01")
DEFAULT_GST_RATE = Decimal("0.18")
MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


@dataclass(frozen=True)
class PricingTier:
    unit: PricingUnit
    threshold_hours: float
    divisor_hours: int
    price_attr: str


# Ascending order matters: the first tier that covers the duration and has a
# rate wins.
PRICING_TIERS = (
    PricingTier(PricingUnit.HOURLY, 24, 1, "PriceHourly"),
    PricingTier(PricingUnit.DAILY, 168, 24, "PriceDaily"),
    PricingTier(PricingUnit.WEEKLY, 720, 168, "PriceWeekly"),
    PricingTier(PricingUnit.MONTHLY, math.inf, 720, "PriceMonthly"),
)


def to_money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_timestamp(value: Any, field: str = "timestamp") -> datetime:
    """Normalize a datetime, date or ISO-8601 string to a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise InvalidIntervalError(f"Invalid date format for {field}: {value!r}", field=field) from exc
    else:
        raise InvalidIntervalError(f"Invalid date format for {field}: {value!r}", field=field)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def calculate_duration(start: Any, end: Any) -> dict:
    start_at = parse_timestamp(start, "start_date")
    end_at = parse_timestamp(end, "end_date")
    if end_at <= start_at:
        raise InvalidIntervalError(
            "End date must be after start date",
            start_date=start_at.isoformat(),
            end_date=end_at.isoformat(),
        )

    delta = end_at - start_at
    milliseconds = (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000
    return {
        "milliseconds": milliseconds,
        "hours": milliseconds / MS_PER_HOUR,
        "days": milliseconds / MS_PER_DAY,
    }


def _tier_rate(variant: Any, tier: PricingTier) -> Optional[Decimal]:
    raw = getattr(variant, tier.price_attr, None)
    if raw is None:
        return None
    rate = Decimal(str(raw))
    return rate if rate > 0 else None


def select_tier(variant: Any, duration_hours: float) -> dict:
    selected = PRICING_TIERS[-1]
    for tier in PRICING_TIERS:
        if duration_hours < tier.threshold_hours and _tier_rate(variant, tier) is not None:
            selected = tier
            break

    rate = _tier_rate(variant, selected)
    if rate is None:
        raise PricingUnavailableError(
            f"No {selected.unit.value.lower()} pricing configured for this product",
            variant_id=getattr(variant, "VariantID", None),
            unit=selected.unit.value,
            duration_hours=round(duration_hours, 4),
        )

    return {
        "unit": selected.unit,
        "rate": rate,
        "periods": math.ceil(duration_hours / selected.divisor_hours),
    }


def calculate_rental_price(variant: Any, start: Any, end: Any) -> dict:
    duration = calculate_duration(start, end)
    tier = select_tier(variant, duration["hours"])
    base_price = to_money(tier["rate"] * tier["periods"])
    return {
        "unit": tier["unit"],
        "periods": tier["periods"],
        "price_per_unit": to_money(tier["rate"]),
        "base_price": base_price,
        "total_hours": duration["hours"],
        "total_days": duration["days"],
    }


def to_quantity(value: Any, **context: Any) -> int:
    """Whole, positive unit count; 2.7 or "two" is rejected rather than truncated."""
    try:
        quantity = Decimal(str(value).strip())
    except ArithmeticError as exc:
        raise ValidationError("Quantity must be a positive integer", quantity=value, **context) from exc
    if not quantity.is_finite() or quantity != quantity.to_integral_value() or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer", quantity=value, **context)
    return int(quantity)


def calculate_item_price(variant: Any, start: Any, end: Any, quantity: Any) -> dict:
    quantity = to_quantity(quantity)
    pricing = calculate_rental_price(variant, start, end)
    return {
        **pricing,
        "quantity": quantity,
        "total": to_money(pricing["base_price"] * quantity),
    }


def normalize_jurisdiction(value: str | None) -> str:
    return (value or "").strip().upper()


def calculate_gst(
    amount: Any,
    vendor_jurisdiction: str | None,
    customer_jurisdiction: str | None,
    rate: Decimal = DEFAULT_GST_RATE,
) -> dict:
    amount = Decimal(str(amount))
    is_same = normalize_jurisdiction(vendor_jurisdiction) == normalize_jurisdiction(customer_jurisdiction)

    if is_same:
        # Each half is rounded on its own; the sum may differ from amount * rate by a cent.
        cgst = sgst = to_money(amount * rate / 2)
        igst = Decimal("0.00")
    else:
        cgst = Decimal("0.00")
        sgst = Decimal("0.00")
        igst = to_money(amount * rate)

    return {
        "cgst": cgst,
        "sgst": sgst,
        "igst": igst,
        "total": cgst + sgst + igst,
        "rate": rate,
        "is_same_jurisdiction": is_same,
    }


def generate_quotation(
    items: Iterable[dict],
    vendor_jurisdiction: str | None,
    customer_jurisdiction: str | None,
    rate: Decimal = DEFAULT_GST_RATE,
) -> dict:
    """Price every line, then tax the aggregate subtotal once.

    Each item is a mapping with ``variant``, ``start_date``, ``end_date`` and
    ``quantity``; ``product_name`` is optional.
    """
    line_items = []
    subtotal = Decimal("0.00")
    for item in items:
        variant = item["variant"]
        pricing = calculate_item_price(variant, item["start_date"], item["end_date"], item["quantity"])
        product = getattr(variant, "Product", None)
        line_items.append(
            {
                "variant_id": getattr(variant, "VariantID", None),
                "product_name": item.get("product_name") or (product.Name if product is not None else "Product"),
                "quantity": pricing["quantity"],
                "start_date": parse_timestamp(item["start_date"], "start_date"),
                "end_date": parse_timestamp(item["end_date"], "end_date"),
                "periods": pricing["periods"],
                "unit": pricing["unit"],
                "price_per_unit": pricing["price_per_unit"],
                "base_price": pricing["base_price"],
                "line_total": pricing["total"],
            }
        )
        subtotal += pricing["total"]

    if not line_items:
        raise ValidationError("Quotation must have at least one item")

    gst = calculate_gst(subtotal, vendor_jurisdiction, customer_jurisdiction, rate)
    return {
        "line_items": line_items,
        "subtotal": to_money(subtotal),
        "tax_breakdown": {
            "cgst": gst["cgst"],
            "sgst": gst["sgst"],
            "igst": gst["igst"],
            "total_tax": gst["total"],
            "tax_rate": gst["rate"],
            "is_same_jurisdiction": gst["is_same_jurisdiction"],
        },
        "total_amount": to_money(subtotal + gst["total"]),
    }
