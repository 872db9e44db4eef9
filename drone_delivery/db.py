"""
Async Postgres store: drones (fleet state) + orders (lifecycle state, non-owning drone reference).
Drone assignment runs in a single transaction: lock the order row, conditionally claim the drone
(UPDATE ... WHERE status = 'AVAILABLE'), check no other active order holds it, then bind.
"""
import json
from typing import Any

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from drone_delivery.config import settings
from drone_delivery.errors import ConflictError, NotFoundError
from drone_delivery.models import Drone, Location, MaintenanceSchedule, Order, OrderFilter, OrderItem
from drone_delivery.order_state import DroneStatus, OrderStatus
from drone_delivery.store import Store

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS drones (
                id VARCHAR(64) PRIMARY KEY,
                drone_id VARCHAR(255) NOT NULL UNIQUE,
                status VARCHAR(20) NOT NULL DEFAULT 'AVAILABLE',
                battery_level INT NOT NULL CHECK (battery_level BETWEEN 0 AND 100),
                max_payload DOUBLE PRECISION NOT NULL CHECK (max_payload > 0),
                latitude DOUBLE PRECISION,
                longitude DOUBLE PRECISION,
                last_maintenance TIMESTAMPTZ,
                next_maintenance TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(64) PRIMARY KEY,
                user_id VARCHAR(255) NOT NULL,
                restaurant_id VARCHAR(255) NOT NULL,
                payment_id VARCHAR(255) NOT NULL,
                delivery_address_id VARCHAR(255) NOT NULL,
                order_items JSONB NOT NULL DEFAULT '[]',
                total_amount DOUBLE PRECISION NOT NULL CHECK (total_amount >= 0),
                order_status VARCHAR(50) NOT NULL,
                drone_ref VARCHAR(64),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_drone_status
            ON orders(drone_ref, order_status);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_restaurant_id
            ON orders(restaurant_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_user_id
            ON orders(user_id);
        """)


def _drone_from_row(row: asyncpg.Record) -> Drone:
    location = None
    if row["latitude"] is not None and row["longitude"] is not None:
        location = Location(latitude=row["latitude"], longitude=row["longitude"])
    schedule = None
    if row["last_maintenance"] is not None or row["next_maintenance"] is not None:
        schedule = MaintenanceSchedule(
            last_maintenance=row["last_maintenance"],
            next_maintenance=row["next_maintenance"],
        )
    return Drone(
        id=row["id"],
        drone_id=row["drone_id"],
        status=DroneStatus(row["status"]),
        battery_level=row["battery_level"],
        max_payload=row["max_payload"],
        current_location=location,
        maintenance_schedule=schedule,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _order_from_row(row: asyncpg.Record) -> Order:
    return Order(
        id=row["id"],
        user=row["user_id"],
        restaurant=row["restaurant_id"],
        payment_id=row["payment_id"],
        delivery_address=row["delivery_address_id"],
        order_items=[OrderItem.model_validate(i) for i in json.loads(row["order_items"])],
        total_amount=row["total_amount"],
        order_status=OrderStatus(row["order_status"]),
        drone=row["drone_ref"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _drone_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Map validated drone attributes to column values."""
    cols: dict[str, Any] = {}
    for name, value in fields.items():
        if name == "current_location":
            cols["latitude"] = value.latitude if value else None
            cols["longitude"] = value.longitude if value else None
        elif name == "maintenance_schedule":
            cols["last_maintenance"] = value.last_maintenance if value else None
            cols["next_maintenance"] = value.next_maintenance if value else None
        elif name == "status":
            cols["status"] = DroneStatus(value).value
        else:
            cols[name] = value
    return cols


_ORDER_COLUMNS = {
    "user": "user_id",
    "restaurant": "restaurant_id",
    "payment_id": "payment_id",
    "delivery_address": "delivery_address_id",
    "total_amount": "total_amount",
    "order_status": "order_status",
    "drone": "drone_ref",
}


def _order_columns(fields: dict[str, Any]) -> dict[str, Any]:
    cols: dict[str, Any] = {}
    for name, value in fields.items():
        if name == "order_items":
            cols["order_items"] = json.dumps([i.model_dump(mode="json") for i in value])
        elif name == "order_status":
            cols["order_status"] = OrderStatus(value).value
        else:
            cols[_ORDER_COLUMNS[name]] = value
    return cols


def _where(flt: OrderFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    args: list[Any] = []

    def add(sql: str, value: Any) -> None:
        args.append(value)
        clauses.append(sql.format(n=len(args)))

    if flt.restaurant is not None:
        add("restaurant_id = ${n}", flt.restaurant)
    if flt.user is not None:
        add("user_id = ${n}", flt.user)
    if flt.drone is not None:
        add("drone_ref = ${n}", flt.drone)
    if flt.status is not None:
        add("order_status = ${n}", flt.status.value)
    if flt.status_not is not None:
        add("order_status <> ${n}", flt.status_not.value)
    if flt.has_drone is True:
        clauses.append("drone_ref IS NOT NULL")
    elif flt.has_drone is False:
        clauses.append("drone_ref IS NULL")
    return (" WHERE " + " AND ".join(clauses)) if clauses else "", args


class PostgresStore(Store):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def close(self) -> None:
        await close_pool()

    async def insert_drone(self, drone: Drone) -> Drone:
        cols = {"id": drone.id, "created_at": drone.created_at, "updated_at": drone.updated_at}
        cols.update(_drone_columns(drone.model_dump(
            include={"drone_id", "status", "battery_level", "max_payload"},
        )))
        cols.update(_drone_columns({
            "current_location": drone.current_location,
            "maintenance_schedule": drone.maintenance_schedule,
        }))
        names = ", ".join(cols)
        params = ", ".join(f"${i}" for i in range(1, len(cols) + 1))
        try:
            row = await self._pool.fetchrow(
                f"INSERT INTO drones ({names}) VALUES ({params}) RETURNING *;",
                *cols.values(),
            )
        except UniqueViolationError:
            raise ConflictError(f"Drone {drone.drone_id} already exists")
        return _drone_from_row(row)

    async def fetch_drone(self, drone_pk: str) -> Drone | None:
        row = await self._pool.fetchrow("SELECT * FROM drones WHERE id = $1;", drone_pk)
        return _drone_from_row(row) if row else None

    async def fetch_drones(self) -> list[Drone]:
        rows = await self._pool.fetch("SELECT * FROM drones ORDER BY created_at ASC;")
        return [_drone_from_row(r) for r in rows]

    async def update_drone(self, drone_pk: str, fields: dict[str, Any]) -> Drone | None:
        cols = _drone_columns(fields)
        if not cols:
            return await self.fetch_drone(drone_pk)
        assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(cols, start=2))
        try:
            row = await self._pool.fetchrow(
                f"UPDATE drones SET {assignments}, updated_at = NOW() WHERE id = $1 RETURNING *;",
                drone_pk,
                *cols.values(),
            )
        except UniqueViolationError:
            raise ConflictError(f"Drone {fields.get('drone_id')} already exists")
        return _drone_from_row(row) if row else None

    async def delete_drone(self, drone_pk: str) -> bool:
        deleted = await self._pool.fetchval("DELETE FROM drones WHERE id = $1 RETURNING id;", drone_pk)
        return deleted is not None

    async def delete_idle_drone(self, drone_pk: str) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                # Row lock serialises against assign_drone, whose conditional claim updates
                # the same drone row.
                drone_row = await conn.fetchrow(
                    "SELECT drone_id FROM drones WHERE id = $1 FOR UPDATE;",
                    drone_pk,
                )
                if drone_row is None:
                    raise NotFoundError("Drone not found")
                busy = await conn.fetchval(
                    """
                    SELECT EXISTS (
                        SELECT 1 FROM orders WHERE drone_ref = $1 AND order_status <> $2
                    );
                    """,
                    drone_pk,
                    OrderStatus.DELIVERED.value,
                )
                if busy:
                    raise ConflictError(f"Drone {drone_row['drone_id']} is assigned to an active order")
                await conn.execute("DELETE FROM drones WHERE id = $1;", drone_pk)

    async def insert_order(self, order: Order) -> Order:
        cols = {"id": order.id, "created_at": order.created_at, "updated_at": order.updated_at}
        cols.update(_order_columns({
            "user": order.user,
            "restaurant": order.restaurant,
            "payment_id": order.payment_id,
            "delivery_address": order.delivery_address,
            "order_items": order.order_items,
            "total_amount": order.total_amount,
            "order_status": order.order_status,
            "drone": order.drone,
        }))
        names = ", ".join(cols)
        params = ", ".join(
            f"${i}::jsonb" if name == "order_items" else f"${i}"
            for i, name in enumerate(cols, start=1)
        )
        row = await self._pool.fetchrow(
            f"INSERT INTO orders ({names}) VALUES ({params}) RETURNING *;",
            *cols.values(),
        )
        return _order_from_row(row)

    async def fetch_order(self, order_id: str) -> Order | None:
        row = await self._pool.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        return _order_from_row(row) if row else None

    async def fetch_orders(self, flt: OrderFilter) -> list[Order]:
        where, args = _where(flt)
        rows = await self._pool.fetch(f"SELECT * FROM orders{where} ORDER BY created_at ASC;", *args)
        return [_order_from_row(r) for r in rows]

    async def update_order(self, order_id: str, fields: dict[str, Any]) -> Order | None:
        cols = _order_columns(fields)
        if not cols:
            return await self.fetch_order(order_id)
        assignments = ", ".join(
            f"{name} = ${i}::jsonb" if name == "order_items" else f"{name} = ${i}"
            for i, name in enumerate(cols, start=2)
        )
        row = await self._pool.fetchrow(
            f"UPDATE orders SET {assignments}, updated_at = NOW() WHERE id = $1 RETURNING *;",
            order_id,
            *cols.values(),
        )
        return _order_from_row(row) if row else None

    async def assign_drone(self, order_id: str, drone_pk: str) -> Order:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                order_row = await conn.fetchrow(
                    "SELECT * FROM orders WHERE id = $1 FOR UPDATE;",
                    order_id,
                )
                if order_row is None:
                    raise NotFoundError("Order not found")
                if order_row["drone_ref"] is not None:
                    raise ConflictError("Order already has a drone assigned")
                if order_row["order_status"] == OrderStatus.DELIVERED.value:
                    raise ConflictError("Order is already delivered")

                # Conditional claim: concurrent claimers block on the row lock and then
                # re-evaluate the predicate, so at most one of them matches.
                claimed = await conn.fetchrow(
                    """
                    UPDATE drones SET status = $1, updated_at = NOW()
                    WHERE id = $2 AND status = $3
                    RETURNING drone_id;
                    """,
                    DroneStatus.IN_DELIVERY.value,
                    drone_pk,
                    DroneStatus.AVAILABLE.value,
                )
                if claimed is None:
                    current = await conn.fetchrow(
                        "SELECT drone_id, status FROM drones WHERE id = $1;",
                        drone_pk,
                    )
                    if current is None:
                        raise NotFoundError("Drone not found")
                    raise ConflictError(
                        f"Drone {current['drone_id']} is not available (status {current['status']})"
                    )

                busy = await conn.fetchval(
                    """
                    SELECT EXISTS (
                        SELECT 1 FROM orders WHERE drone_ref = $1 AND order_status <> $2
                    );
                    """,
                    drone_pk,
                    OrderStatus.DELIVERED.value,
                )
                if busy:
                    raise ConflictError(f"Drone {claimed['drone_id']} is bound to an active order")

                row = await conn.fetchrow(
                    """
                    UPDATE orders SET drone_ref = $1, updated_at = NOW()
                    WHERE id = $2 RETURNING *;
                    """,
                    drone_pk,
                    order_id,
                )
        return _order_from_row(row)


async def open_store() -> PostgresStore:
    pool = await get_pool()
    await init_schema(pool)
    return PostgresStore(pool)
