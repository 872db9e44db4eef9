"""
Role -> permitted operations. Pure mapping, no transport or persistence involved.
The actor (id + role) is resolved upstream by the auth gateway and handed in as-is.

Status writes are additionally scoped by target status: a restaurant writes the kitchen
statuses, a delivery operator writes the delivery statuses.
"""
from dataclasses import dataclass
from enum import Enum

from drone_delivery.errors import ForbiddenError, UnauthorizedError
from drone_delivery.order_state import OrderStatus


class Role(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DELIVERY_OPERATOR = "delivery operator"


class Operation(str, Enum):
    PLACE_ORDER = "place_order"
    VIEW_OWN_ORDERS = "view_own_orders"
    PREPARE_ORDER = "prepare_order"  # Preparing -> Ready
    VIEW_RESTAURANT_ORDERS = "view_restaurant_orders"
    ASSIGN_DRONE = "assign_drone"
    ADVANCE_DELIVERY = "advance_delivery"  # Out for delivery / Delivered
    VIEW_DISPATCH_BOARD = "view_dispatch_board"
    MANAGE_DRONES = "manage_drones"


PERMISSIONS: dict[Role, frozenset[Operation]] = {
    Role.CUSTOMER: frozenset({
        Operation.PLACE_ORDER,
        Operation.VIEW_OWN_ORDERS,
    }),
    Role.RESTAURANT: frozenset({
        Operation.PREPARE_ORDER,
        Operation.VIEW_RESTAURANT_ORDERS,
    }),
    Role.DELIVERY_OPERATOR: frozenset({
        Operation.ASSIGN_DRONE,
        Operation.ADVANCE_DELIVERY,
        Operation.VIEW_DISPATCH_BOARD,
        Operation.MANAGE_DRONES,
    }),
}

# Target statuses each status-writing operation may set.
WRITABLE_STATUSES: dict[Operation, frozenset[OrderStatus]] = {
    Operation.PREPARE_ORDER: frozenset({OrderStatus.PREPARING, OrderStatus.READY}),
    Operation.ADVANCE_DELIVERY: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}),
}


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role


def is_allowed(
    role: Role | str | None,
    operation: Operation,
    target_status: OrderStatus | None = None,
) -> bool:
    """
    True if `role` may invoke `operation` (and, for status writes, set `target_status`).
    Unknown roles are allowed nothing.
    """
    try:
        resolved = Role(role)
    except ValueError:
        return False
    if operation not in PERMISSIONS.get(resolved, frozenset()):
        return False
    if target_status is not None and operation in WRITABLE_STATUSES:
        return target_status in WRITABLE_STATUSES[operation]
    return True


def authorize(
    actor: Actor | None,
    operation: Operation,
    target_status: OrderStatus | None = None,
) -> Actor:
    if actor is None or not actor.id:
        raise UnauthorizedError()
    if not is_allowed(actor.role, operation, target_status):
        raise ForbiddenError()
    return actor
