import redis.asyncio as redis

from drone_delivery.config import settings

_redis: redis.Redis | None = None

PENDING = "pending"


async def get_redis(url: str | None = None) -> redis.Redis | None:
    """
    Shared client. The app lifespan opens it with its configured URL; later calls reuse it.
    None means no Redis was configured and idempotency is disabled.
    """
    global _redis
    if _redis is None and url:
        _redis = redis.from_url(url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def order_key(actor_id: str, idempotency_key: str) -> str:
    return f"idempotency:order:{actor_id}:{idempotency_key}"


async def reserve_key(key: str, ttl_seconds: int | None = None) -> str | None:
    """
    Claim `key` for a new submission with SET NX.
    Returns None if we claimed it (caller proceeds, then calls complete_key).
    Otherwise returns the stored value: PENDING while the first request is in flight,
    or the id of the order it created.
    """
    r = await get_redis()
    if r is None:
        return None
    ttl = ttl_seconds or settings.idempotency_ttl_seconds
    was_set = await r.set(key, PENDING, nx=True, ex=ttl)
    if was_set:
        return None
    return await r.get(key) or PENDING


async def complete_key(key: str, order_id: str, ttl_seconds: int | None = None) -> None:
    r = await get_redis()
    if r is not None:
        await r.set(key, order_id, ex=ttl_seconds or settings.idempotency_ttl_seconds)


async def release_key(key: str) -> None:
    """Drop a reservation after a failed submission so the client can retry."""
    r = await get_redis()
    if r is not None:
        await r.delete(key)
