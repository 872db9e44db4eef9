import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Header
from fastapi.responses import JSONResponse

from drone_delivery.access_policy import Actor, Operation, authorize
from drone_delivery.errors import ConflictError
from drone_delivery.lifecycle import LifecycleEngine
from drone_delivery.models import DroneAssignment, Order, StatusChange, parse
from drone_delivery.redis_client import PENDING, complete_key, order_key, release_key, reserve_key
from drone_delivery.routes.deps import get_actor, get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=Order)
async def place_order(
    body: Any = Body(...),
    idempotency_key: str | None = Header(default=None),
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Any:
    """
    Place an order as the authenticated customer. Status starts at Preparing.
    With an Idempotency-Key header (and Redis configured), a resubmission returns the
    order created by the first request instead of creating another.
    """
    if not idempotency_key:
        return await engine.place_order(actor, body)

    actor = authorize(actor, Operation.PLACE_ORDER)
    key = order_key(actor.id, idempotency_key)
    existing = await reserve_key(key)
    if existing == PENDING:
        raise ConflictError("An order with this Idempotency-Key is still being processed")
    if existing is not None:
        logger.info("Replaying order %s for Idempotency-Key %s", existing, idempotency_key)
        order = await engine.get_order(actor, existing)
        return JSONResponse(status_code=200, content=order.model_dump(mode="json", by_alias=True))

    try:
        order = await engine.place_order(actor, body)
    except Exception:
        await release_key(key)
        raise
    await complete_key(key, order.id)
    return order


@router.get("/mine", response_model=list[Order])
async def my_orders(
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> list[Order]:
    return await engine.orders_for_customer(actor)


@router.get("/unassigned", response_model=list[Order])
async def unassigned_orders(
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> list[Order]:
    """Ready orders with no drone yet."""
    return await engine.unassigned_ready_orders(actor)


@router.get("/accepted", response_model=list[Order])
async def accepted_orders(
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> list[Order]:
    """Orders holding a drone and not yet delivered."""
    return await engine.assigned_active_orders(actor)


@router.get("/delivered", response_model=list[Order])
async def delivered_orders(
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> list[Order]:
    return await engine.delivered_orders(actor)


@router.get("/restaurant/{restaurant_id}", response_model=list[Order])
async def restaurant_orders(
    restaurant_id: str,
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> list[Order]:
    return await engine.orders_for_restaurant(actor, restaurant_id)


@router.get("/drone/{drone_pk}", response_model=list[Order])
async def drone_orders(
    drone_pk: str,
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> list[Order]:
    return await engine.orders_for_drone(actor, drone_pk)


@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: str,
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Order:
    return await engine.get_order(actor, order_id)


@router.put("/{order_id}", response_model=Order)
async def update_order_status(
    order_id: str,
    body: Any = Body(...),
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Order:
    """Restaurant marks the order Ready. Only orderStatus is read from the body."""
    authorize(actor, Operation.PREPARE_ORDER)
    change = parse(StatusChange, body)
    return await engine.update_order_status(actor, order_id, change.order_status)


@router.put("/{order_id}/delivery-status", response_model=Order)
async def update_delivery_status(
    order_id: str,
    body: Any = Body(...),
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Order:
    """Operator advances delivery. Delivered returns the bound drone to AVAILABLE."""
    authorize(actor, Operation.ADVANCE_DELIVERY)
    change = parse(StatusChange, body)
    return await engine.update_delivery_status(actor, order_id, change.order_status)


@router.put("/{order_id}/drone", response_model=Order)
async def assign_drone(
    order_id: str,
    body: Any = Body(...),
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Order:
    authorize(actor, Operation.ASSIGN_DRONE)
    assignment = parse(DroneAssignment, body)
    return await engine.assign_drone(actor, order_id, assignment.drone_id)
