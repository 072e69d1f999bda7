from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gridmon.deps import get_cache
from gridmon.services.cache import Cache, RedisCache

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    ts: str
    cache: str


@router.get("/health", response_model=HealthResponse)
async def health(cache: Cache = Depends(get_cache)) -> HealthResponse:
    backend = "redis" if isinstance(cache, RedisCache) else "memory"
    return HealthResponse(status="ok", ts=datetime.now().isoformat(), cache=backend)
