"""Sample cache inspection and reset."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.dependencies import get_coordinator
from app.engine.coordinator import GenerationCoordinator
from app.models.responses import CacheStatsResponse

router = APIRouter()


def _stats(coordinator: GenerationCoordinator) -> CacheStatsResponse:
    cache = coordinator.cache
    if cache is None:
        return CacheStatsResponse(enabled=False)
    return CacheStatsResponse(enabled=True, entries=cache.count, size_bytes=cache.size_bytes, max_bytes=cache.max_bytes)


@router.get("/cache", response_model=CacheStatsResponse)
async def cache_stats(coordinator: GenerationCoordinator = Depends(get_coordinator)) -> CacheStatsResponse:
    return _stats(coordinator)


@router.delete("/cache", response_model=CacheStatsResponse)
async def clear_cache(coordinator: GenerationCoordinator = Depends(get_coordinator)) -> CacheStatsResponse:
    coordinator.clear_cache()
    return _stats(coordinator)
