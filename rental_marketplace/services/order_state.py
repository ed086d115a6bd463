from __future__ import annotations

from enum import Enum

from rental_marketplace.errors import InvalidTransitionError
from rental_marketplace.models.rental_models import Order
from rental_marketplace.models.statuses import OrderStatus
from rental_marketplace.services.pricing_service import utcnow


class OrderEvent(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    PICKUP = "pickup"
    RETURN = "return"
    COMPLETE = "complete"


ORDER_TRANSITIONS: dict[OrderStatus, dict[OrderEvent, OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderEvent.CONFIRM: OrderStatus.CONFIRMED,
        OrderEvent.CANCEL: OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        OrderEvent.CANCEL: OrderStatus.CANCELLED,
        OrderEvent.PICKUP: OrderStatus.PICKED_UP,
    },
    OrderStatus.PICKED_UP: {
        OrderEvent.RETURN: OrderStatus.RETURNED,
    },
    OrderStatus.RETURNED: {
        OrderEvent.COMPLETE: OrderStatus.COMPLETED,
    },
    OrderStatus.COMPLETED: {},
    OrderStatus.CANCELLED: {},
}

_EVENT_PARTICIPLES = {
    OrderEvent.CONFIRM: "confirmed",
    OrderEvent.CANCEL: "cancelled",
    OrderEvent.PICKUP: "picked up",
    OrderEvent.RETURN: "returned",
    OrderEvent.COMPLETE: "completed",
}


def allowed_sources(event: OrderEvent) -> list[OrderStatus]:
    return [status for status, events in ORDER_TRANSITIONS.items() if event in events]


def can_apply(status: OrderStatus, event: OrderEvent) -> bool:
    return event in ORDER_TRANSITIONS.get(OrderStatus(status), {})


def ensure_can_apply(order: Order, event: OrderEvent) -> OrderStatus:
    current = OrderStatus(order.Status)
    target = ORDER_TRANSITIONS.get(current, {}).get(event)
    if target is None:
        allowed = ", ".join(status.value for status in allowed_sources(event))
        raise InvalidTransitionError(
            f"Cannot {event.value} order with status: {current.value}. "
            f"Only {allowed} orders can be {_EVENT_PARTICIPLES[event]}.",
            order_id=order.OrderID,
            current_status=current.value,
            requested_transition=event.value,
        )
    return target


def apply_event(order: Order, event: OrderEvent) -> OrderStatus:
    target = ensure_can_apply(order, event)
    order.Status = target
    order.UpdatedAt = utcnow()
    return target
