import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from drone_delivery.config import Settings, settings
from drone_delivery.errors import DeliveryError, InternalError
from drone_delivery.lifecycle import LifecycleEngine
from drone_delivery.metrics import get_metrics_bytes, get_metrics_content_type
from drone_delivery.redis_client import close_redis, get_redis
from drone_delivery.routes import drones, orders
from drone_delivery.store import MemoryStore, Store

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def open_store(cfg: Settings) -> Store:
    if cfg.storage_backend == "postgres":
        from drone_delivery.db import open_store as open_postgres_store
        return await open_postgres_store()
    return MemoryStore(latency_ms=cfg.store_latency_ms)


def create_app(cfg: Settings = settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = await open_store(cfg)
        app.state.engine = LifecycleEngine(store)
        await get_redis(cfg.redis_url)
        logger.info("Store ready. Backend=%s", cfg.storage_backend)
        yield
        await close_redis()
        await store.close()

    app = FastAPI(title="Drone Delivery Dispatch", lifespan=lifespan)
    app.include_router(drones.router)
    app.include_router(orders.router)

    @app.exception_handler(DeliveryError)
    async def delivery_error(request: Request, exc: DeliveryError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.reason})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        reason = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": reason})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        err = InternalError()
        return JSONResponse(status_code=err.status_code, content={"error": err.reason})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint: placements, transitions, assignments, releases."""
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


app = create_app()
