"""
Drone Registry: owns drone records and their availability state.
"""
import logging
from typing import Any

from drone_delivery.errors import NotFoundError
from drone_delivery.models import Drone, DroneCreate, DroneUpdate, new_id, now_utc, parse, parse_drone_status
from drone_delivery.store import Store

logger = logging.getLogger(__name__)

DRONE_NOT_FOUND = "Drone not found"


class DroneRegistry:
    def __init__(self, store: Store):
        self._store = store

    async def create_drone(self, fields: dict[str, Any]) -> Drone:
        data = parse(DroneCreate, fields)
        ts = now_utc()
        drone = await self._store.insert_drone(
            Drone(id=new_id(), created_at=ts, updated_at=ts, **data.model_dump())
        )
        logger.info("Registered drone %s (id=%s, status=%s)", drone.drone_id, drone.id, drone.status.value)
        return drone

    async def get_drone(self, drone_pk: str) -> Drone:
        drone = await self._store.fetch_drone(drone_pk)
        if drone is None:
            raise NotFoundError(DRONE_NOT_FOUND)
        return drone

    async def list_drones(self) -> list[Drone]:
        return await self._store.fetch_drones()

    async def update_drone(self, drone_pk: str, fields: dict[str, Any]) -> Drone:
        data = parse(DroneUpdate, fields)
        # Keep nested models as models; model_dump would flatten them to dicts.
        changes = {name: getattr(data, name) for name in data.model_fields_set}
        drone = await self._store.update_drone(drone_pk, changes)
        if drone is None:
            raise NotFoundError(DRONE_NOT_FOUND)
        return drone

    async def set_drone_status(self, drone_pk: str, status: Any) -> Drone:
        new_status = parse_drone_status(status)
        drone = await self._store.update_drone(drone_pk, {"status": new_status})
        if drone is None:
            raise NotFoundError(DRONE_NOT_FOUND)
        logger.info("Drone %s status -> %s", drone.drone_id, new_status.value)
        return drone

    async def delete_drone(self, drone_pk: str) -> None:
        if not await self._store.delete_drone(drone_pk):
            raise NotFoundError(DRONE_NOT_FOUND)
        logger.info("Deleted drone id=%s", drone_pk)
