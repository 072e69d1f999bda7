import os

# In-memory store and in-process cache for every test run
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REDIS_URL", None)
os.environ.pop("THRESHOLD_RULES_PATH", None)
os.environ.pop("LOG_DIR", None)

import pytest
from fastapi.testclient import TestClient

from gridmon import deps
from gridmon.main import app
from gridmon.models.db import create_db_and_tables, make_engine
from gridmon.models.domain import ElementType, LinePathPoint
from gridmon.services.alarm_evaluator import AlarmEvaluator
from gridmon.services.cache import MemoryCache
from gridmon.services.event_lifecycle import EventLifecycle
from gridmon.services.store import GridStore
from gridmon.services.thresholds import ThresholdRuleSet
from gridmon.services.topology_graph import TopologyService
from gridmon.services.topology_views import TopologyViewBuilder


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GridBuilder:
    """Shortcuts for building small grids in tests."""

    def __init__(self, topology: TopologyService):
        self.topology = topology

    def bus(self, name, voltage_level=11.0, bus_type="pq", **kw):
        props = {"voltage_level": voltage_level, "bus_type": bus_type}
        return self.topology.create_element(ElementType.BUS, name, props, **kw)

    def load(self, name, voltage_level=11.0, rated_power=500.0, **kw):
        props = {"voltage_level": voltage_level, "rated_power": rated_power}
        return self.topology.create_element(ElementType.LOAD, name, props, **kw)

    def generator(self, name, voltage_level=11.0, rated_capacity=100.0, **kw):
        props = {
            "voltage_level": voltage_level,
            "rated_capacity": rated_capacity,
            "min_capacity": 0.0,
            "max_capacity": rated_capacity * 1.2,
            "generation_type": "solar",
        }
        return self.topology.create_element(ElementType.GENERATOR, name, props, **kw)

    def transformer(self, name, primary_voltage=132.0, secondary_voltage=11.0, **kw):
        props = {"primary_voltage": primary_voltage, "secondary_voltage": secondary_voltage, "rated_power": 40.0}
        return self.topology.create_element(ElementType.TRANSFORMER, name, props, **kw)

    def line(self, name, voltage_level=11.0, path=None, **kw):
        if path is None:
            path = [(0.0, 0.0), (0.0, 1.0)]
        points = [LinePathPoint(sequence_order=i, latitude=lat, longitude=lon) for i, (lat, lon) in enumerate(path)]
        return self.topology.create_element(
            ElementType.LINE, name, {"voltage_level": voltage_level}, path=points, **kw
        )

    def connect(self, a, b, is_connected=True):
        conn, _ = self.topology.upsert_connection(a.id, b.id, is_connected=is_connected)
        return conn


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    yield GridStore(engine, retry_attempts=2, retry_backoff_s=0.0)
    engine.dispose()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def topology(store, cache):
    return TopologyService(store, cache)


@pytest.fixture
def views(store, cache):
    return TopologyViewBuilder(store, cache, ttl_s=600)


@pytest.fixture
def rules():
    return ThresholdRuleSet()


@pytest.fixture
def lifecycle(store, cache):
    return EventLifecycle(store, cache, mirror_ttl_s=3600)


@pytest.fixture
def evaluator(store, cache, rules, lifecycle):
    return AlarmEvaluator(store, cache, rules, lifecycle, alarm_ttl_s=300, latest_ttl_s=60)


@pytest.fixture
def grid(topology):
    return GridBuilder(topology)


@pytest.fixture
def client():
    deps.reset()
    with TestClient(app) as c:
        yield c
    deps.reset()
