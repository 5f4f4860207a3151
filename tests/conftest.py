import pytest
from fastapi.testclient import TestClient
from datetime import datetime, timedelta
from typing import Any, Dict, List

from skids_sync.core.config import Settings
from skids_sync.core.deps import get_sync_engine
from skids_sync.database.engine import make_engine
from skids_sync.main import create_app
from skids_sync.schemas.sync import QueueItemRead
from skids_sync.services.sync_engine import OfflineSyncEngine


class MutableClock:
    """Naive UTC clock the tests can move around."""

    def __init__(self, now: datetime = datetime(2026, 10, 18, 9, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeServerApi:
    """In-memory stand-in for the server read/write APIs."""

    def __init__(self):
        self.collections: Dict[str, List[Dict[str, Any]]] = {
            "children": [], "appointments": [], "reports": [], "campaigns": [], "messages": []
        }
        self.failing_collections = set()
        self.failing_items = set()
        self.fetch_calls: List[str] = []
        self.pushed: List[QueueItemRead] = []
        self.token = None
        self.healthy = True
        self.closed = False
        # Set to an asyncio.Event to hold fetches until the test releases them
        self.fetch_gate = None

    def set_auth_token(self, token):
        self.token = token

    def clear_auth_token(self):
        self.token = None

    async def fetch_collection(self, collection: str) -> List[Dict[str, Any]]:
        self.fetch_calls.append(collection)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if collection in self.failing_collections:
            raise ConnectionError(f"{collection} unreachable")
        return [dict(p) for p in self.collections.get(collection, [])]

    async def push(self, item: QueueItemRead) -> bool:
        self.pushed.append(item)
        return item.id not in self.failing_items

    async def check_health(self) -> bool:
        return self.healthy

    async def aclose(self):
        self.closed = True


@pytest.fixture(name="clock")
def clock_fixture():
    return MutableClock()


@pytest.fixture(name="api")
def api_fixture():
    return FakeServerApi()


@pytest.fixture(name="test_settings")
def settings_fixture():
    return Settings(
        LOCAL_DB_URL="sqlite://",
        SYNC_INTERVAL_SECONDS=3600,
        SYNC_MAX_RETRIES=3,
        FRESHNESS_MAX_AGE_HOURS=6,
        CONNECTIVITY_PROBE_ENABLED=False,
        ENABLE_OFFLINE_MODE=True,
    )


@pytest.fixture(name="sync_engine")
def sync_engine_fixture(test_settings: Settings, api: FakeServerApi, clock: MutableClock):
    engine = OfflineSyncEngine(
        test_settings,
        engine=make_engine("sqlite://"),
        api=api,
        clock=clock,
    )
    engine.store.init()
    return engine


@pytest.fixture(name="store")
def store_fixture(sync_engine: OfflineSyncEngine):
    return sync_engine.store


@pytest.fixture(name="queue")
def queue_fixture(sync_engine: OfflineSyncEngine):
    return sync_engine.queue


@pytest.fixture(name="coordinator")
def coordinator_fixture(sync_engine: OfflineSyncEngine):
    return sync_engine.coordinator


@pytest.fixture(name="client")
def client_fixture(test_settings: Settings, api: FakeServerApi, clock: MutableClock):
    engine = OfflineSyncEngine(
        test_settings,
        engine=make_engine("sqlite://"),
        api=api,
        clock=clock,
    )
    app = create_app(engine)

    def get_sync_engine_override():
        return engine

    app.dependency_overrides[get_sync_engine] = get_sync_engine_override
    with TestClient(app) as client:
        client.sync_engine = engine
        yield client
    app.dependency_overrides.clear()
