from fastapi import Header, Request

from drone_delivery.access_policy import Actor, Role
from drone_delivery.errors import ForbiddenError
from drone_delivery.lifecycle import LifecycleEngine


def get_engine(request: Request) -> LifecycleEngine:
    return request.app.state.engine


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor | None:
    """
    Actor as resolved by the upstream auth gateway. Returns None when no identity was
    supplied; the engine turns that into 401. An unrecognised role is refused outright.
    """
    if not x_actor_id:
        return None
    try:
        role = Role(x_actor_role)
    except ValueError:
        raise ForbiddenError()
    return Actor(id=x_actor_id, role=role)
