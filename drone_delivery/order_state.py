"""
Order lifecycle and drone availability vocabulary.
The literal values are part of the external contract and must not change.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PREPARING = "Preparing"
    READY = "Ready"
    OUT_FOR_DELIVERY = "Out for delivery"
    DELIVERED = "Delivered"


class DroneStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    IN_DELIVERY = "IN_DELIVERY"
    MAINTENANCE = "MAINTENANCE"
    OFFLINE = "OFFLINE"


INITIAL_STATUS = OrderStatus.PREPARING

# Nominal progression. Status writes are not checked against it; callers may
# overwrite the status directly, only assignment and delivery carry side effects.
NEXT_STATUS: dict[OrderStatus, OrderStatus | None] = {
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.OUT_FOR_DELIVERY: OrderStatus.DELIVERED,
    OrderStatus.DELIVERED: None,  # terminal
}


def is_active(status: OrderStatus) -> bool:
    """True while the order still holds its drone."""
    return status != OrderStatus.DELIVERED


def is_nominal_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """True if `new` is the next step after `current` in the nominal progression."""
    return NEXT_STATUS.get(current) == new
