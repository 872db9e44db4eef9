import pytest

from _helper import CUSTOMER, OPERATOR, OTHER_CUSTOMER, RESTAURANT, drone_fields, order_fields, ready_order
from drone_delivery.access_policy import Actor, Role
from drone_delivery.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from drone_delivery.order_state import DroneStatus, OrderStatus


async def test_full_delivery_scenario(engine):
    drone = await engine.drones.create_drone(drone_fields("DRONE001", batteryLevel=100))
    order = await engine.place_order(CUSTOMER, order_fields())
    assert order.order_status == OrderStatus.PREPARING
    assert order.user == CUSTOMER.id
    assert order.drone is None

    order = await engine.update_order_status(RESTAURANT, order.id, "Ready")
    assert order.order_status == OrderStatus.READY

    order = await engine.assign_drone(OPERATOR, order.id, drone.id)
    assert order.drone == drone.id
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.IN_DELIVERY

    order = await engine.update_delivery_status(OPERATOR, order.id, "Out for delivery")
    assert order.order_status == OrderStatus.OUT_FOR_DELIVERY
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.IN_DELIVERY

    order = await engine.update_delivery_status(OPERATOR, order.id, "Delivered")
    assert order.order_status == OrderStatus.DELIVERED
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.AVAILABLE


async def test_place_order_ignores_client_status_and_owner(engine):
    order = await engine.place_order(
        CUSTOMER, order_fields(orderStatus="Delivered", user="someone-else", drone="x")
    )
    assert order.order_status == OrderStatus.PREPARING
    assert order.user == CUSTOMER.id
    assert order.drone is None


async def test_place_order_keeps_item_order(engine):
    items = [
        {"item": {"dishName": "Dish 1", "price": 30}, "quantity": 2},
        {"item": {"dishName": "Dish 2", "price": 40}, "quantity": 1},
    ]
    order = await engine.place_order(CUSTOMER, order_fields(orderItems=items, totalAmount=100))
    assert [i.item["dishName"] for i in order.order_items] == ["Dish 1", "Dish 2"]
    assert order.total_amount == 100


@pytest.mark.parametrize(
    "fields",
    [
        {"restaurant": "rest-1"},
        order_fields(totalAmount=-1),
        order_fields(orderItems=[{"item": {"dishName": "x"}, "quantity": 0}]),
    ],
)
async def test_place_order_validation(engine, fields):
    with pytest.raises(ValidationError):
        await engine.place_order(CUSTOMER, fields)


async def test_place_order_requires_customer(engine):
    with pytest.raises(UnauthorizedError):
        await engine.place_order(None, order_fields())
    with pytest.raises(ForbiddenError):
        await engine.place_order(RESTAURANT, order_fields())


async def test_customer_cannot_mark_ready(engine):
    order = await engine.place_order(CUSTOMER, order_fields())
    with pytest.raises(ForbiddenError):
        await engine.update_order_status(CUSTOMER, order.id, "Ready")
    assert (await engine.orders.get_order(order.id)).order_status == OrderStatus.PREPARING


async def test_operator_cannot_use_restaurant_path(engine):
    order = await engine.place_order(CUSTOMER, order_fields())
    with pytest.raises(ForbiddenError):
        await engine.update_order_status(OPERATOR, order.id, "Ready")


async def test_restaurant_cannot_assign_or_deliver(engine):
    drone = await engine.drones.create_drone(drone_fields())
    order = await ready_order(engine)
    with pytest.raises(ForbiddenError):
        await engine.assign_drone(RESTAURANT, order.id, drone.id)
    with pytest.raises(ForbiddenError):
        await engine.update_delivery_status(RESTAURANT, order.id, "Delivered")
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.AVAILABLE


async def test_missing_identity_is_unauthorized(engine):
    order = await engine.place_order(CUSTOMER, order_fields())
    with pytest.raises(UnauthorizedError):
        await engine.update_order_status(None, order.id, "Ready")
    with pytest.raises(UnauthorizedError):
        await engine.update_order_status(Actor(id="", role=Role.RESTAURANT), order.id, "Ready")


async def test_unknown_status_is_validation_error(engine):
    order = await engine.place_order(CUSTOMER, order_fields())
    with pytest.raises(ValidationError):
        await engine.update_order_status(RESTAURANT, order.id, "Cancelled")
    with pytest.raises(ValidationError):
        await engine.update_delivery_status(OPERATOR, order.id, "delivered")


async def test_unknown_order_is_not_found(engine):
    with pytest.raises(NotFoundError) as exc:
        await engine.update_order_status(RESTAURANT, "missing", "Ready")
    assert exc.value.reason == "Order not found"
    with pytest.raises(NotFoundError):
        await engine.update_delivery_status(OPERATOR, "missing", "Delivered")
    with pytest.raises(NotFoundError):
        await engine.get_order(CUSTOMER, "missing")


async def test_status_overwrite_outside_nominal_order_is_allowed(engine):
    order = await engine.place_order(CUSTOMER, order_fields())
    order = await engine.update_delivery_status(OPERATOR, order.id, "Delivered")
    assert order.order_status == OrderStatus.DELIVERED
    order = await engine.update_order_status(RESTAURANT, order.id, "Preparing")
    assert order.order_status == OrderStatus.PREPARING


async def test_assignment_to_busy_drone_conflicts_and_changes_nothing(engine):
    drone = await engine.drones.create_drone(drone_fields())
    await engine.drones.set_drone_status(drone.id, "IN_DELIVERY")
    order = await ready_order(engine)

    with pytest.raises(ConflictError):
        await engine.assign_drone(OPERATOR, order.id, drone.id)

    after = await engine.orders.get_order(order.id)
    assert after.drone is None
    assert after.order_status == OrderStatus.READY
    assert after.updated_at == order.updated_at
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.IN_DELIVERY


@pytest.mark.parametrize("status", ["MAINTENANCE", "OFFLINE"])
async def test_assignment_requires_available_drone(engine, status):
    drone = await engine.drones.create_drone(drone_fields(status=status))
    order = await ready_order(engine)
    with pytest.raises(ConflictError):
        await engine.assign_drone(OPERATOR, order.id, drone.id)
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus(status)


async def test_assignment_unknown_drone_or_order(engine):
    drone = await engine.drones.create_drone(drone_fields())
    order = await ready_order(engine)
    with pytest.raises(NotFoundError) as exc:
        await engine.assign_drone(OPERATOR, order.id, "missing")
    assert exc.value.reason == "Drone not found"
    assert (await engine.orders.get_order(order.id)).drone is None

    with pytest.raises(NotFoundError) as exc:
        await engine.assign_drone(OPERATOR, "missing", drone.id)
    assert exc.value.reason == "Order not found"
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.AVAILABLE


async def test_order_with_drone_cannot_take_another(engine):
    first = await engine.drones.create_drone(drone_fields("DRONE001"))
    second = await engine.drones.create_drone(drone_fields("DRONE002"))
    order = await ready_order(engine)
    await engine.assign_drone(OPERATOR, order.id, first.id)

    with pytest.raises(ConflictError):
        await engine.assign_drone(OPERATOR, order.id, second.id)
    assert (await engine.drones.get_drone(second.id)).status == DroneStatus.AVAILABLE
    assert (await engine.orders.get_order(order.id)).drone == first.id


async def test_available_drone_still_bound_to_active_order_conflicts(engine):
    drone = await engine.drones.create_drone(drone_fields())
    held = await ready_order(engine)
    await engine.assign_drone(OPERATOR, held.id, drone.id)
    # Direct edit puts the drone back to AVAILABLE while its order is still active.
    await engine.drones.set_drone_status(drone.id, "AVAILABLE")

    other = await ready_order(engine, customer=OTHER_CUSTOMER)
    with pytest.raises(ConflictError):
        await engine.assign_drone(OPERATOR, other.id, drone.id)
    assert (await engine.orders.get_order(other.id)).drone is None


@pytest.mark.parametrize("drone_status", ["IN_DELIVERY", "MAINTENANCE", "OFFLINE", "AVAILABLE"])
async def test_delivered_always_releases_drone(engine, drone_status):
    drone = await engine.drones.create_drone(drone_fields())
    order = await ready_order(engine)
    await engine.assign_drone(OPERATOR, order.id, drone.id)
    await engine.drones.set_drone_status(drone.id, drone_status)

    await engine.update_delivery_status(OPERATOR, order.id, "Delivered")
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.AVAILABLE


@pytest.mark.parametrize("status", ["Out for delivery", "Delivered"])
async def test_restaurant_cannot_write_delivery_statuses(engine, status):
    drone = await engine.drones.create_drone(drone_fields())
    order = await ready_order(engine)
    await engine.assign_drone(OPERATOR, order.id, drone.id)

    with pytest.raises(ForbiddenError):
        await engine.update_order_status(RESTAURANT, order.id, status)
    after = await engine.orders.get_order(order.id)
    assert after.order_status == OrderStatus.READY
    assert after.drone == drone.id
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.IN_DELIVERY


@pytest.mark.parametrize("status", ["Preparing", "Ready"])
async def test_operator_cannot_write_kitchen_statuses(engine, status):
    order = await engine.place_order(CUSTOMER, order_fields())
    with pytest.raises(ForbiddenError):
        await engine.update_delivery_status(OPERATOR, order.id, status)
    assert (await engine.orders.get_order(order.id)).order_status == OrderStatus.PREPARING


async def test_forbidden_status_checked_after_role(engine):
    order = await engine.place_order(CUSTOMER, order_fields())
    with pytest.raises(UnauthorizedError):
        await engine.update_order_status(None, order.id, "Delivered")
    with pytest.raises(ForbiddenError):
        await engine.update_order_status(CUSTOMER, order.id, "Cancelled")


async def test_delivered_without_drone(engine):
    order = await ready_order(engine)
    order = await engine.update_delivery_status(OPERATOR, order.id, "Delivered")
    assert order.order_status == OrderStatus.DELIVERED
    assert order.drone is None


async def test_released_drone_can_be_reassigned(engine):
    drone = await engine.drones.create_drone(drone_fields())
    first = await ready_order(engine)
    await engine.assign_drone(OPERATOR, first.id, drone.id)
    await engine.update_delivery_status(OPERATOR, first.id, "Delivered")

    second = await ready_order(engine, customer=OTHER_CUSTOMER)
    second = await engine.assign_drone(OPERATOR, second.id, drone.id)
    assert second.drone == drone.id
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.IN_DELIVERY


async def test_status_path_cannot_touch_other_fields(engine):
    order = await engine.place_order(CUSTOMER, order_fields())
    with pytest.raises(ValidationError):
        await engine.orders.update_order_fields(order.id, {"drone": "anything"})
    with pytest.raises(ValidationError):
        await engine.orders.update_order_fields(order.id, {"totalAmount": 1})


async def test_decommission_refuses_drone_on_active_order(engine):
    drone = await engine.drones.create_drone(drone_fields())
    order = await ready_order(engine)
    await engine.assign_drone(OPERATOR, order.id, drone.id)

    with pytest.raises(ConflictError):
        await engine.decommission_drone(OPERATOR, drone.id)

    await engine.update_delivery_status(OPERATOR, order.id, "Delivered")
    await engine.decommission_drone(OPERATOR, drone.id)
    with pytest.raises(NotFoundError):
        await engine.drones.get_drone(drone.id)


async def test_decommission_requires_operator(engine):
    drone = await engine.drones.create_drone(drone_fields())
    with pytest.raises(ForbiddenError):
        await engine.decommission_drone(CUSTOMER, drone.id)
    with pytest.raises(NotFoundError):
        await engine.decommission_drone(OPERATOR, "missing")


async def test_delivered_order_whose_drone_was_deleted(engine):
    drone = await engine.drones.create_drone(drone_fields())
    order = await ready_order(engine)
    await engine.assign_drone(OPERATOR, order.id, drone.id)
    # Registry-level delete bypasses the active-order guard.
    await engine.drones.delete_drone(drone.id)

    order = await engine.update_delivery_status(OPERATOR, order.id, "Delivered")
    assert order.order_status == OrderStatus.DELIVERED


async def test_delivered_order_cannot_take_a_drone(engine):
    drone = await engine.drones.create_drone(drone_fields())
    order = await engine.place_order(CUSTOMER, order_fields())
    order = await engine.update_delivery_status(OPERATOR, order.id, "Delivered")

    with pytest.raises(ConflictError):
        await engine.assign_drone(OPERATOR, order.id, drone.id)
    assert (await engine.orders.get_order(order.id)).drone is None
    assert (await engine.drones.get_drone(drone.id)).status == DroneStatus.AVAILABLE


@pytest.mark.parametrize("status", ["Preparing", "Out for delivery"])
async def test_undelivered_order_can_take_a_drone(engine, status):
    drone = await engine.drones.create_drone(drone_fields())
    order = await engine.place_order(CUSTOMER, order_fields())
    if status == "Out for delivery":
        await engine.update_delivery_status(OPERATOR, order.id, status)

    order = await engine.assign_drone(OPERATOR, order.id, drone.id)
    assert order.drone == drone.id
    assert [o.id for o in await engine.orders.assigned_active()] == [order.id]


async def test_single_order_read_is_scoped(engine):
    order = await engine.place_order(CUSTOMER, order_fields(restaurant="rest-1"))

    assert (await engine.get_order(CUSTOMER, order.id)).id == order.id
    assert (await engine.get_order(RESTAURANT, order.id)).id == order.id
    assert (await engine.get_order(OPERATOR, order.id)).id == order.id

    with pytest.raises(ForbiddenError):
        await engine.get_order(OTHER_CUSTOMER, order.id)
    with pytest.raises(ForbiddenError):
        await engine.get_order(Actor(id="rest-2", role=Role.RESTAURANT), order.id)
    with pytest.raises(UnauthorizedError):
        await engine.get_order(None, order.id)
