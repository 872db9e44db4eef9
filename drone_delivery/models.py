"""
Drone and order records plus the input schemas used to validate create/update payloads.
Wire names are camelCase (droneId, batteryLevel, orderStatus, ...); Python attributes are snake_case.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from drone_delivery.errors import ValidationError
from drone_delivery.order_state import INITIAL_STATUS, DroneStatus, OrderStatus


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(_Schema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class MaintenanceSchedule(_Schema):
    last_maintenance: datetime | None = None
    next_maintenance: datetime | None = None


class DroneCreate(_Schema):
    drone_id: str = Field(..., min_length=1)
    status: DroneStatus = DroneStatus.AVAILABLE
    battery_level: int = Field(..., ge=0, le=100)
    max_payload: float = Field(..., gt=0)
    current_location: Location | None = None
    maintenance_schedule: MaintenanceSchedule | None = None


_REQUIRED_DRONE_FIELDS = ("drone_id", "status", "battery_level", "max_payload")


class DroneUpdate(_Schema):
    """Partial drone edit. Supplied fields obey the same constraints as DroneCreate."""
    drone_id: str | None = Field(None, min_length=1)
    status: DroneStatus | None = None
    battery_level: int | None = Field(None, ge=0, le=100)
    max_payload: float | None = Field(None, gt=0)
    current_location: Location | None = None
    maintenance_schedule: MaintenanceSchedule | None = None

    @model_validator(mode="after")
    def no_null_required(self) -> "DroneUpdate":
        for name in _REQUIRED_DRONE_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self


class Drone(DroneCreate):
    id: str
    created_at: datetime
    updated_at: datetime


class OrderItem(_Schema):
    item: dict[str, Any]
    quantity: int = Field(..., ge=1)


class OrderCreate(_Schema):
    """
    Fields a customer supplies at placement. The owner and the initial status are
    set by the engine, not taken from the payload. totalAmount is trusted as given.
    """
    restaurant: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    delivery_address: str = Field(..., min_length=1)
    order_items: list[OrderItem] = Field(default_factory=list)
    total_amount: float = Field(..., ge=0)


class Order(OrderCreate):
    id: str
    user: str
    order_status: OrderStatus = INITIAL_STATUS
    drone: str | None = None
    created_at: datetime
    updated_at: datetime


class StatusChange(_Schema):
    order_status: str


class DroneStatusChange(_Schema):
    status: str


class DroneAssignment(_Schema):
    drone_id: str = Field(..., min_length=1)


@dataclass(frozen=True)
class OrderFilter:
    """Conjunction of optional criteria; None means "don't filter on this"."""
    restaurant: str | None = None
    user: str | None = None
    drone: str | None = None
    status: OrderStatus | None = None
    status_not: OrderStatus | None = None
    has_drone: bool | None = None

    def matches(self, order: Order) -> bool:
        if self.restaurant is not None and order.restaurant != self.restaurant:
            return False
        if self.user is not None and order.user != self.user:
            return False
        if self.drone is not None and order.drone != self.drone:
            return False
        if self.status is not None and order.order_status != self.status:
            return False
        if self.status_not is not None and order.order_status == self.status_not:
            return False
        if self.has_drone is not None and (order.drone is not None) != self.has_drone:
            return False
        return True


def parse(schema: type[BaseModel], data: Any) -> Any:
    """Validate `data` against `schema`, raising ValidationError with the first offending field."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        raise ValidationError(f"{loc}: {msg}" if loc else msg) from None


def parse_order_status(value: Any) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid order status: {value!r}") from None


def parse_drone_status(value: Any) -> DroneStatus:
    try:
        return DroneStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid drone status: {value!r}") from None
