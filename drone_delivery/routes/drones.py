from typing import Any

from fastapi import APIRouter, Body, Depends

from drone_delivery.access_policy import Actor, Operation, authorize
from drone_delivery.lifecycle import LifecycleEngine
from drone_delivery.models import Drone, DroneStatusChange, parse
from drone_delivery.routes.deps import get_actor, get_engine

router = APIRouter(prefix="/drones", tags=["drones"])


@router.post("", status_code=201, response_model=Drone)
async def create_drone(
    body: Any = Body(...),
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Drone:
    """Register a drone. droneId must be unique; status defaults to AVAILABLE."""
    authorize(actor, Operation.MANAGE_DRONES)
    return await engine.drones.create_drone(body)


@router.get("", response_model=list[Drone])
async def list_drones(engine: LifecycleEngine = Depends(get_engine)) -> list[Drone]:
    return await engine.drones.list_drones()


@router.get("/{drone_pk}", response_model=Drone)
async def get_drone(drone_pk: str, engine: LifecycleEngine = Depends(get_engine)) -> Drone:
    return await engine.drones.get_drone(drone_pk)


@router.put("/{drone_pk}", response_model=Drone)
async def update_drone(
    drone_pk: str,
    body: Any = Body(...),
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Drone:
    authorize(actor, Operation.MANAGE_DRONES)
    return await engine.drones.update_drone(drone_pk, body)


@router.patch("/{drone_pk}/status", response_model=Drone)
async def set_drone_status(
    drone_pk: str,
    body: Any = Body(...),
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> Drone:
    authorize(actor, Operation.MANAGE_DRONES)
    change = parse(DroneStatusChange, body)
    return await engine.drones.set_drone_status(drone_pk, change.status)


@router.delete("/{drone_pk}")
async def delete_drone(
    drone_pk: str,
    actor: Actor | None = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
) -> dict:
    await engine.decommission_drone(actor, drone_pk)
    return {"message": "Drone deleted"}
