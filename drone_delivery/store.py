"""
Persistence interface shared by the registry, order store and lifecycle engine, plus the
in-process implementation. The Postgres implementation lives in drone_delivery.db.

assign_drone is the one composite write: it must claim the drone (AVAILABLE -> IN_DELIVERY)
and bind it to the order as a single atomic unit, or change nothing.
"""
import abc
import asyncio
from typing import Any

from drone_delivery.errors import ConflictError, NotFoundError
from drone_delivery.models import Drone, Order, OrderFilter, now_utc
from drone_delivery.order_state import DroneStatus, OrderStatus


class Store(abc.ABC):
    @abc.abstractmethod
    async def insert_drone(self, drone: Drone) -> Drone:
        """Raises ConflictError when drone.drone_id is taken."""

    @abc.abstractmethod
    async def fetch_drone(self, drone_pk: str) -> Drone | None: ...

    @abc.abstractmethod
    async def fetch_drones(self) -> list[Drone]: ...

    @abc.abstractmethod
    async def update_drone(self, drone_pk: str, fields: dict[str, Any]) -> Drone | None:
        """Apply already-validated fields. Returns None if the drone does not exist."""

    @abc.abstractmethod
    async def delete_drone(self, drone_pk: str) -> bool: ...

    @abc.abstractmethod
    async def delete_idle_drone(self, drone_pk: str) -> None:
        """
        Delete the drone only if no non-Delivered order references it, checked and applied
        as one unit. Raises NotFoundError or ConflictError; on error nothing is written.
        """

    @abc.abstractmethod
    async def insert_order(self, order: Order) -> Order: ...

    @abc.abstractmethod
    async def fetch_order(self, order_id: str) -> Order | None: ...

    @abc.abstractmethod
    async def fetch_orders(self, flt: OrderFilter) -> list[Order]: ...

    @abc.abstractmethod
    async def update_order(self, order_id: str, fields: dict[str, Any]) -> Order | None: ...

    @abc.abstractmethod
    async def assign_drone(self, order_id: str, drone_pk: str) -> Order:
        """
        Atomically bind an AVAILABLE, unbound drone to an undelivered order that has no drone yet.
        Raises NotFoundError (order or drone) or ConflictError; on error nothing is written.
        """

    async def close(self) -> None:
        return None


class MemoryStore(Store):
    """
    Dict-backed store for a single event loop. Writes to a drone or order run inside an
    asyncio.Lock owned by that record, so check-then-set sequences cannot interleave.
    Locks are created with the record and dropped when a drone is deleted.
    """

    def __init__(self, latency_ms: int = 0):
        self._drones: dict[str, Drone] = {}
        self._orders: dict[str, Order] = {}
        self._drone_locks: dict[str, asyncio.Lock] = {}
        self._order_locks: dict[str, asyncio.Lock] = {}
        self._codes_lock = asyncio.Lock()  # guards droneId uniqueness across records
        self._latency = latency_ms / 1000

    async def _persist_delay(self) -> None:
        if self._latency > 0:
            await asyncio.sleep(self._latency)

    def _code_taken(self, code: str, exclude_pk: str | None = None) -> bool:
        return any(d.drone_id == code and pk != exclude_pk for pk, d in self._drones.items())

    def _select(self, flt: OrderFilter) -> list[Order]:
        return [o for o in self._orders.values() if flt.matches(o)]

    def _bound_to_active_order(self, drone_pk: str) -> bool:
        return bool(self._select(OrderFilter(drone=drone_pk, status_not=OrderStatus.DELIVERED)))

    async def insert_drone(self, drone: Drone) -> Drone:
        async with self._codes_lock:
            if self._code_taken(drone.drone_id):
                raise ConflictError(f"Drone {drone.drone_id} already exists")
            await self._persist_delay()
            self._drones[drone.id] = drone
            self._drone_locks[drone.id] = asyncio.Lock()
            return drone.model_copy(deep=True)

    async def fetch_drone(self, drone_pk: str) -> Drone | None:
        drone = self._drones.get(drone_pk)
        return drone.model_copy(deep=True) if drone else None

    async def fetch_drones(self) -> list[Drone]:
        return [d.model_copy(deep=True) for d in self._drones.values()]

    async def update_drone(self, drone_pk: str, fields: dict[str, Any]) -> Drone | None:
        lock = self._drone_locks.get(drone_pk)
        if lock is None:
            return None
        async with self._codes_lock, lock:
            # Re-read under the lock: the drone may have been deleted while we waited.
            drone = self._drones.get(drone_pk)
            if drone is None:
                return None
            code = fields.get("drone_id")
            if code is not None and self._code_taken(code, exclude_pk=drone_pk):
                raise ConflictError(f"Drone {code} already exists")
            await self._persist_delay()
            updated = drone.model_copy(update={**fields, "updated_at": now_utc()}, deep=True)
            self._drones[drone_pk] = updated
            return updated.model_copy(deep=True)

    async def delete_drone(self, drone_pk: str) -> bool:
        lock = self._drone_locks.get(drone_pk)
        if lock is None:
            return False
        async with lock:
            return self._pop_drone(drone_pk)

    async def delete_idle_drone(self, drone_pk: str) -> None:
        lock = self._drone_locks.get(drone_pk)
        if lock is None:
            raise NotFoundError("Drone not found")
        async with lock:
            drone = self._drones.get(drone_pk)
            if drone is None:
                raise NotFoundError("Drone not found")
            if self._bound_to_active_order(drone_pk):
                raise ConflictError(f"Drone {drone.drone_id} is assigned to an active order")
            await self._persist_delay()
            self._pop_drone(drone_pk)

    def _pop_drone(self, drone_pk: str) -> bool:
        self._drone_locks.pop(drone_pk, None)
        return self._drones.pop(drone_pk, None) is not None

    async def insert_order(self, order: Order) -> Order:
        await self._persist_delay()
        self._orders[order.id] = order
        self._order_locks[order.id] = asyncio.Lock()
        return order.model_copy(deep=True)

    async def fetch_order(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def fetch_orders(self, flt: OrderFilter) -> list[Order]:
        return [o.model_copy(deep=True) for o in self._select(flt)]

    async def update_order(self, order_id: str, fields: dict[str, Any]) -> Order | None:
        lock = self._order_locks.get(order_id)
        if lock is None:
            return None
        async with lock:
            order = self._orders[order_id]
            await self._persist_delay()
            updated = order.model_copy(update={**fields, "updated_at": now_utc()}, deep=True)
            self._orders[order_id] = updated
            return updated.model_copy(deep=True)

    async def assign_drone(self, order_id: str, drone_pk: str) -> Order:
        order_lock = self._order_locks.get(order_id)
        if order_lock is None:
            raise NotFoundError("Order not found")
        drone_lock = self._drone_locks.get(drone_pk)
        if drone_lock is None:
            raise NotFoundError("Drone not found")

        # Lock order: order first, then drone.
        async with order_lock, drone_lock:
            order = self._orders[order_id]
            drone = self._drones.get(drone_pk)
            if drone is None:
                raise NotFoundError("Drone not found")
            if order.drone is not None:
                raise ConflictError("Order already has a drone assigned")
            if order.order_status == OrderStatus.DELIVERED:
                raise ConflictError("Order is already delivered")
            if drone.status != DroneStatus.AVAILABLE:
                raise ConflictError(f"Drone {drone.drone_id} is not available (status {drone.status.value})")
            if self._bound_to_active_order(drone_pk):
                raise ConflictError(f"Drone {drone.drone_id} is bound to an active order")

            await self._persist_delay()
            ts = now_utc()
            self._drones[drone_pk] = drone.model_copy(update={"status": DroneStatus.IN_DELIVERY, "updated_at": ts})
            updated = order.model_copy(update={"drone": drone_pk, "updated_at": ts}, deep=True)
            self._orders[order_id] = updated
            return updated.model_copy(deep=True)
