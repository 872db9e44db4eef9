import pytest
from fastapi.testclient import TestClient

from drone_delivery.config import Settings
from drone_delivery.lifecycle import LifecycleEngine
from drone_delivery.main import create_app
from drone_delivery.store import MemoryStore


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def engine(store: MemoryStore) -> LifecycleEngine:
    return LifecycleEngine(store)


@pytest.fixture
def client():
    app = create_app(Settings(storage_backend="memory", redis_url=None, store_latency_ms=0))
    with TestClient(app) as c:
        yield c
