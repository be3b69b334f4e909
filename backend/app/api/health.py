"""Health check + meta endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.dependencies import get_coordinator
from app.engine.coordinator import GenerationCoordinator
from app.engine.sampling import ALGORITHMS, STRATEGIES
from app.models.responses import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(coordinator: GenerationCoordinator = Depends(get_coordinator)) -> HealthResponse:
    strategies = [kind.value for kind in STRATEGIES]
    strategies += [f"advanced:{algorithm.value}" for algorithm in ALGORITHMS]
    return HealthResponse(
        status="ok",
        version="0.1.0",
        stages_registered=coordinator.pipeline.registry.count,
        execution_strategy=coordinator.pipeline.strategy.name,
        sampling_strategies=strategies,
    )
