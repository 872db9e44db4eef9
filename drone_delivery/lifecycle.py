"""
Lifecycle Engine: applies order status transitions and drone assignment on behalf of an actor.

    Preparing --(restaurant)--> Ready --(operator assigns drone)--> Ready + drone
        --(operator)--> Out for delivery --(operator)--> Delivered   [drone -> AVAILABLE]

Status writes are not checked against the nominal order. Each path writes only its own statuses
(restaurant: Preparing, Ready; operator: Out for delivery, Delivered), in any sequence.
Only assignment and delivery touch drone state.
"""
import logging
from typing import Any

from drone_delivery.access_policy import Actor, Operation, Role, authorize
from drone_delivery.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from drone_delivery.metrics import (
    drone_assignment_conflicts_total,
    drone_assignments_total,
    drone_releases_total,
    order_status_transitions_total,
    orders_placed_total,
)
from drone_delivery.models import Drone, Order, parse_order_status
from drone_delivery.order_state import DroneStatus, OrderStatus, is_nominal_transition
from drone_delivery.orders import OrderStore
from drone_delivery.registry import DroneRegistry
from drone_delivery.store import Store

logger = logging.getLogger(__name__)


class LifecycleEngine:
    def __init__(self, store: Store):
        self.store = store
        self.drones = DroneRegistry(store)
        self.orders = OrderStore(store)

    async def place_order(self, actor: Actor | None, fields: dict[str, Any]) -> Order:
        actor = authorize(actor, Operation.PLACE_ORDER)
        order = await self.orders.create_order(fields, user=actor.id)
        orders_placed_total.inc()
        logger.info("Order %s placed by customer %s (restaurant=%s)", order.id, actor.id, order.restaurant)
        return order

    async def get_order(self, actor: Actor | None, order_id: str) -> Order:
        """
        Single-order read. Customers see their own orders, restaurants the orders placed with
        them, delivery operators any order.
        """
        if actor is None or not actor.id:
            raise UnauthorizedError()
        order = await self.orders.get_order(order_id)
        if actor.role == Role.CUSTOMER and order.user == actor.id:
            return order
        if actor.role == Role.RESTAURANT and order.restaurant == actor.id:
            return order
        if actor.role == Role.DELIVERY_OPERATOR:
            return order
        raise ForbiddenError()

    async def update_order_status(self, actor: Actor | None, order_id: str, status: Any) -> Order:
        """Restaurant path (nominally Preparing -> Ready). Delivery statuses are Forbidden."""
        new_status = _scoped_status(actor, Operation.PREPARE_ORDER, status)
        return await self._write_status(order_id, new_status)

    async def update_delivery_status(self, actor: Actor | None, order_id: str, status: Any) -> Order:
        """Operator path (nominally Out for delivery, then Delivered). Kitchen statuses are Forbidden."""
        new_status = _scoped_status(actor, Operation.ADVANCE_DELIVERY, status)
        return await self._write_status(order_id, new_status)

    async def assign_drone(self, actor: Actor | None, order_id: str, drone_pk: str) -> Order:
        """
        Bind an AVAILABLE drone to the order and move it to IN_DELIVERY. The claim and the
        binding are one atomic store operation; on failure neither record changes.
        """
        authorize(actor, Operation.ASSIGN_DRONE)
        try:
            order = await self.store.assign_drone(order_id, drone_pk)
        except ConflictError as e:
            drone_assignment_conflicts_total.inc()
            logger.warning("Assignment of drone %s to order %s rejected: %s", drone_pk, order_id, e.reason)
            raise
        drone_assignments_total.inc()
        logger.info("Drone %s assigned to order %s by operator %s", drone_pk, order_id, actor.id)
        return order

    async def decommission_drone(self, actor: Actor | None, drone_pk: str) -> None:
        """Delete a drone unless an active order still references it."""
        authorize(actor, Operation.MANAGE_DRONES)
        # Check and delete are one store operation so a concurrent assignment cannot slip in.
        await self.store.delete_idle_drone(drone_pk)
        logger.info("Drone %s decommissioned by operator %s", drone_pk, actor.id)

    async def orders_for_restaurant(self, actor: Actor | None, restaurant_id: str) -> list[Order]:
        authorize(actor, Operation.VIEW_RESTAURANT_ORDERS)
        return await self.orders.by_restaurant(restaurant_id)

    async def orders_for_customer(self, actor: Actor | None) -> list[Order]:
        actor = authorize(actor, Operation.VIEW_OWN_ORDERS)
        return await self.orders.by_customer(actor.id)

    async def orders_for_drone(self, actor: Actor | None, drone_pk: str) -> list[Order]:
        authorize(actor, Operation.VIEW_DISPATCH_BOARD)
        return await self.orders.by_drone(drone_pk)

    async def unassigned_ready_orders(self, actor: Actor | None) -> list[Order]:
        authorize(actor, Operation.VIEW_DISPATCH_BOARD)
        return await self.orders.unassigned_ready()

    async def assigned_active_orders(self, actor: Actor | None) -> list[Order]:
        authorize(actor, Operation.VIEW_DISPATCH_BOARD)
        return await self.orders.assigned_active()

    async def delivered_orders(self, actor: Actor | None) -> list[Order]:
        authorize(actor, Operation.VIEW_DISPATCH_BOARD)
        return await self.orders.delivered()

    async def _write_status(self, order_id: str, new_status: OrderStatus) -> Order:
        current = await self.orders.get_order(order_id)
        if not is_nominal_transition(current.order_status, new_status):
            logger.info(
                "Order %s status overwrite %s -> %s (outside nominal progression)",
                order_id, current.order_status.value, new_status.value,
            )
        order = await self.orders.update_order_fields(order_id, {"order_status": new_status})
        order_status_transitions_total.labels(
            from_status=current.order_status.value,
            to_status=new_status.value,
        ).inc()

        # Release is unconditional: whatever the drone's status is now, it becomes AVAILABLE.
        if new_status == OrderStatus.DELIVERED and order.drone is not None:
            await self._release_drone(order)
        return order

    async def _release_drone(self, order: Order) -> Drone | None:
        try:
            drone = await self.drones.set_drone_status(order.drone, DroneStatus.AVAILABLE)
        except NotFoundError:
            logger.warning("Order %s delivered but its drone %s no longer exists", order.id, order.drone)
            return None
        drone_releases_total.inc()
        logger.info("Drone %s released after delivery of order %s", drone.drone_id, order.id)
        return drone


def _scoped_status(actor: Actor | None, operation: Operation, status: Any) -> OrderStatus:
    """Role check first, then the status value, then whether this path may set that status."""
    authorize(actor, operation)
    new_status = parse_order_status(status)
    authorize(actor, operation, new_status)
    return new_status
