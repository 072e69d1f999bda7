from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

_TRUE = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in _TRUE


def env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val.strip())
    except Exception:
        return default


def env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return float(val.strip())
    except Exception:
        return default


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip()


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: Optional[str]
    allowed_origins: str
    log_level: str
    log_dir: Optional[str]

    topology_cache_ttl_s: int
    alarm_mirror_ttl_s: int
    event_mirror_ttl_s: int
    measurement_cache_ttl_s: int

    threshold_rules_path: Optional[str]
    threshold_escalation_ratio: float

    store_retry_attempts: int


def load_settings() -> Settings:
    return Settings(
        database_url=env_str("DATABASE_URL", "sqlite:///gridmon.db"),
        redis_url=env_str("REDIS_URL"),
        allowed_origins=env_str("ALLOWED_ORIGINS", "*"),
        log_level=env_str("LOG_LEVEL", "INFO").upper(),
        log_dir=env_str("LOG_DIR"),
        topology_cache_ttl_s=env_int("TOPOLOGY_CACHE_TTL_S", 600),
        alarm_mirror_ttl_s=env_int("ALARM_MIRROR_TTL_S", 300),
        event_mirror_ttl_s=env_int("EVENT_MIRROR_TTL_S", 3600),
        measurement_cache_ttl_s=env_int("MEASUREMENT_CACHE_TTL_S", 60),
        threshold_rules_path=env_str("THRESHOLD_RULES_PATH"),
        threshold_escalation_ratio=env_float("THRESHOLD_ESCALATION_RATIO", 0.2),
        store_retry_attempts=max(1, env_int("STORE_RETRY_ATTEMPTS", 3)),
    )
