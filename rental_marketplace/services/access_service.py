from __future__ import annotations

import logging
from dataclasses import dataclass

from rental_marketplace.errors import ForbiddenError, ValidationError
from rental_marketplace.models.rental_models import Order
from rental_marketplace.models.statuses import ActorRole

ACCESS_LOGGER = logging.getLogger("rental_marketplace.access")


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


def normalize_role(raw_role) -> ActorRole:
    if isinstance(raw_role, ActorRole):
        return raw_role
    value = (raw_role or "").strip().upper()
    try:
        return ActorRole(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {raw_role!r}", role=raw_role) from exc


def build_actor(user_id, role) -> Actor:
    try:
        resolved_id = int(user_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Actor id must be an integer", user_id=user_id) from exc
    return Actor(user_id=resolved_id, role=normalize_role(role))


def _deny(order: Order, actor: Actor, action: str) -> ForbiddenError:
    ACCESS_LOGGER.warning(
        "Forbidden action=%s order_id=%s user_id=%s role=%s",
        action,
        order.OrderID,
        actor.user_id,
        actor.role.value,
    )
    return ForbiddenError(
        f"You are not allowed to {action} this order",
        order_id=order.OrderID,
        user_id=actor.user_id,
        role=actor.role.value,
    )


def is_order_vendor(order: Order, actor: Actor) -> bool:
    return actor.role == ActorRole.VENDOR and actor.user_id == order.VendorID


def is_order_customer(order: Order, actor: Actor) -> bool:
    return actor.role == ActorRole.CUSTOMER and actor.user_id == order.CustomerID


def require_vendor_or_admin(order: Order, actor: Actor, action: str) -> None:
    if actor.is_admin or is_order_vendor(order, actor):
        return
    raise _deny(order, actor, action)


def require_customer_or_admin(order: Order, actor: Actor, action: str) -> None:
    if actor.is_admin or is_order_customer(order, actor):
        return
    raise _deny(order, actor, action)


def require_participant(order: Order, actor: Actor, action: str) -> None:
    if actor.is_admin or is_order_vendor(order, actor) or is_order_customer(order, actor):
        return
    raise _deny(order, actor, action)
