"""
Order Store: generic persistence operations over orders plus the named read queries
that back the dispatch board and per-actor listings.
"""
from typing import Any

from drone_delivery.errors import NotFoundError, ValidationError
from drone_delivery.models import Order, OrderCreate, OrderFilter, new_id, now_utc, parse, parse_order_status
from drone_delivery.order_state import INITIAL_STATUS, OrderStatus
from drone_delivery.store import Store

ORDER_NOT_FOUND = "Order not found"

# The drone reference is written only by LifecycleEngine.assign_drone.
_UPDATABLE_FIELDS = {"order_status"}


class OrderStore:
    def __init__(self, store: Store):
        self._store = store

    async def create_order(self, fields: dict[str, Any], user: str) -> Order:
        """Validate a placement payload and persist it as a new order owned by `user`."""
        data = parse(OrderCreate, fields)
        ts = now_utc()
        order = Order(
            id=new_id(),
            user=user,
            order_status=INITIAL_STATUS,
            drone=None,
            created_at=ts,
            updated_at=ts,
            **data.model_dump(),
        )
        return await self._store.insert_order(order)

    async def get_order(self, order_id: str) -> Order:
        order = await self._store.fetch_order(order_id)
        if order is None:
            raise NotFoundError(ORDER_NOT_FOUND)
        return order

    async def list_orders(self, flt: OrderFilter | None = None) -> list[Order]:
        return await self._store.fetch_orders(flt or OrderFilter())

    async def update_order_fields(self, order_id: str, fields: dict[str, Any]) -> Order:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        changes = dict(fields)
        if "order_status" in changes:
            changes["order_status"] = parse_order_status(changes["order_status"])
        order = await self._store.update_order(order_id, changes)
        if order is None:
            raise NotFoundError(ORDER_NOT_FOUND)
        return order

    async def by_restaurant(self, restaurant_id: str) -> list[Order]:
        return await self.list_orders(OrderFilter(restaurant=restaurant_id))

    async def by_customer(self, user_id: str) -> list[Order]:
        return await self.list_orders(OrderFilter(user=user_id))

    async def by_drone(self, drone_pk: str) -> list[Order]:
        return await self.list_orders(OrderFilter(drone=drone_pk))

    async def unassigned_ready(self) -> list[Order]:
        return await self.list_orders(OrderFilter(status=OrderStatus.READY, has_drone=False))

    async def assigned_active(self) -> list[Order]:
        return await self.list_orders(OrderFilter(status_not=OrderStatus.DELIVERED, has_drone=True))

    async def delivered(self) -> list[Order]:
        return await self.list_orders(OrderFilter(status=OrderStatus.DELIVERED))

    async def active_for_drone(self, drone_pk: str) -> list[Order]:
        """Orders currently holding the drone. This is the only source of drone -> order binding."""
        return await self.list_orders(OrderFilter(drone=drone_pk, status_not=OrderStatus.DELIVERED))
