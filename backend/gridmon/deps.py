"""
deps.py

Purpose:
  Dependency Injection (DI) container for the application.
  Manages singleton instances of the store, cache and services so state is
  shared across requests.

Services Managed:
  - `GridStore` (system of record, SQLModel engine)
  - `Cache` (Redis when `REDIS_URL` is set, in-process otherwise)
  - `TopologyService` / `TopologyViewBuilder`
  - `EventLifecycle` / `AlarmEvaluator`

Pattern:
  - Uses `lru_cache` to enforce the Singleton pattern per provider.
  - Tests swap backends via `app.dependency_overrides` or by calling
    `reset()` after changing the environment.
"""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy.engine import Engine

from gridmon.config import Settings, load_settings
from gridmon.models.db import create_db_and_tables, make_engine
from gridmon.services.alarm_evaluator import AlarmEvaluator
from gridmon.services.cache import Cache, build_cache
from gridmon.services.event_lifecycle import EventLifecycle
from gridmon.services.store import GridStore
from gridmon.services.thresholds import ThresholdRuleSet
from gridmon.services.topology_graph import TopologyService
from gridmon.services.topology_views import TopologyViewBuilder


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    engine = make_engine(get_settings().database_url)
    create_db_and_tables(engine)
    return engine


@lru_cache(maxsize=1)
def get_store() -> GridStore:
    return GridStore(get_engine(), retry_attempts=get_settings().store_retry_attempts)


@lru_cache(maxsize=1)
def get_cache() -> Cache:
    return build_cache(get_settings().redis_url)


@lru_cache(maxsize=1)
def get_rules() -> ThresholdRuleSet:
    s = get_settings()
    if s.threshold_rules_path:
        return ThresholdRuleSet.from_json_file(s.threshold_rules_path, s.threshold_escalation_ratio)
    return ThresholdRuleSet(escalation_ratio=s.threshold_escalation_ratio)


@lru_cache(maxsize=1)
def get_topology_service() -> TopologyService:
    return TopologyService(get_store(), get_cache())


@lru_cache(maxsize=1)
def get_view_builder() -> TopologyViewBuilder:
    return TopologyViewBuilder(get_store(), get_cache(), ttl_s=get_settings().topology_cache_ttl_s)


@lru_cache(maxsize=1)
def get_event_lifecycle() -> EventLifecycle:
    return EventLifecycle(get_store(), get_cache(), mirror_ttl_s=get_settings().event_mirror_ttl_s)


@lru_cache(maxsize=1)
def get_alarm_evaluator() -> AlarmEvaluator:
    s = get_settings()
    return AlarmEvaluator(
        get_store(),
        get_cache(),
        get_rules(),
        get_event_lifecycle(),
        alarm_ttl_s=s.alarm_mirror_ttl_s,
        latest_ttl_s=s.measurement_cache_ttl_s,
    )


_PROVIDERS = (
    get_settings,
    get_engine,
    get_store,
    get_cache,
    get_rules,
    get_topology_service,
    get_view_builder,
    get_event_lifecycle,
    get_alarm_evaluator,
)


def reset() -> None:
    for provider in _PROVIDERS:
        provider.cache_clear()
